# Copyright 2025 podpace.app
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Custom exception classes for podpace.

This module defines application-specific exceptions that allow
selective error handling without catching system exceptions like
KeyboardInterrupt or SystemExit.

Example:
    try:
        gate.enqueue_analysis(user_id, role, job_id, path, filename)
    except QuotaExceededError as e:
        # Render an upgrade path, not a retry
        logger.info("quota_exceeded", kind=e.kind, limit=e.limit)
    except PodpaceError as e:
        logger.error("submission_failed", error=str(e))
"""

from typing import Optional


class PodpaceError(Exception):
    """
    Base exception for all podpace application errors.

    Attributes:
        message: Human-readable error message
        context: Optional dict of additional error context (job_id, path, etc.)

    Example:
        raise PodpaceError("Failed to store upload", job_id="abc", path="/tmp/x.mp3")
    """

    def __init__(self, message: str, **context):
        """
        Initialize PodpaceError.

        Args:
            message: Human-readable error message
            **context: Optional keyword arguments for error context
        """
        super().__init__(message)
        self.message = message
        self.context = context if context else {}

    def __str__(self):
        """Return string representation of error."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message

    def __repr__(self):
        """Return detailed representation for debugging."""
        name = type(self).__name__
        if self.context:
            return f"{name}(message={self.message!r}, context={self.context!r})"
        return f"{name}(message={self.message!r})"


class JobStoreError(PodpaceError):
    """Raised when the job ledger cannot be read or a required write fails."""

    pass


class EnqueueError(PodpaceError):
    """Raised when a job cannot be placed on its stage queue."""

    pass


class JobNotFoundError(PodpaceError):
    """Raised when a job id has no status record."""

    pass


class InvalidJobStateError(PodpaceError):
    """Raised when an operation is not allowed in the job's current status."""

    pass


class InvalidUploadError(PodpaceError):
    """Raised when an uploaded file is missing, empty or not audio."""

    pass


class OutputMissingError(PodpaceError):
    """Raised when a COMPLETE job's output file is gone from disk."""

    pass


class SpeakerNotFoundError(PodpaceError):
    """Raised when a preview asks for a speaker with no playable segment."""

    pass


class QuotaExceededError(PodpaceError):
    """
    Raised by the pipeline gate when a user's daily quota is used up.

    Callers render an upgrade path for this error, not retry logic. A
    request that raised this was never enqueued and never created a job.

    Attributes:
        kind: Quota kind that was exhausted ("analysis" or "adjustment")
        limit: Daily limit for that kind
        used: Usage count after the rejected attempt (None if unknown)
        reset_seconds: Seconds until the counter resets at UTC midnight
    """

    def __init__(
        self,
        message: str,
        kind: str,
        limit: int,
        used: Optional[int] = None,
        reset_seconds: Optional[int] = None,
    ):
        super().__init__(message, kind=kind, limit=limit)
        self.kind = kind
        self.limit = limit
        self.used = used
        self.reset_seconds = reset_seconds


class TranscriptionError(PodpaceError):
    """Raised when the transcription service reports a terminal error."""

    pass


class TranscriptionTimeoutError(TranscriptionError):
    """Raised when polling exceeds the attempt budget."""

    pass


class AnalysisDataMissingError(PodpaceError):
    """Raised when adjustment runs without persisted speakers and segments."""

    pass


class MediaToolError(PodpaceError):
    """
    Raised when an external media process fails.

    Attributes:
        stderr: Captured diagnostic output from the tool, if any
    """

    def __init__(self, message: str, stderr: Optional[str] = None, **context):
        super().__init__(message, **context)
        self.stderr = stderr


__all__ = [
    "PodpaceError",
    "JobStoreError",
    "EnqueueError",
    "JobNotFoundError",
    "InvalidJobStateError",
    "InvalidUploadError",
    "OutputMissingError",
    "SpeakerNotFoundError",
    "QuotaExceededError",
    "TranscriptionError",
    "TranscriptionTimeoutError",
    "AnalysisDataMissingError",
    "MediaToolError",
]
