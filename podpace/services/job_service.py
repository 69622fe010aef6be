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
Caller-facing job operations.

JobService is what an HTTP layer (or the CLI) calls: it validates input,
stores uploads, routes requests through the pipeline gate, and shapes
job-ledger data for status polling, downloads and speaker previews.
"""

import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from structlog import get_logger

from ..core.audio_tools import MediaTool
from ..models.job import Job, JobStatus, QuotaKind, TargetSpec, UserRole
from ..repositories.job_repository import JobRepository
from ..repositories.quota_repository import QuotaRepository
from ..utils.exceptions import (
    InvalidJobStateError,
    InvalidUploadError,
    JobNotFoundError,
    OutputMissingError,
    PodpaceError,
    SpeakerNotFoundError,
)
from .pipeline_gate import PipelineGate

logger = get_logger(__name__)

DEFAULT_UPLOAD_EXTENSION = ".mp3"
DEFAULT_PREVIEW_SECONDS = 10.0


@dataclass(frozen=True)
class DownloadInfo:
    """Where a finished output lives and what to call it when served."""

    path: Path
    filename: str


class JobService:
    """Entry points for submitting, adjusting and inspecting jobs."""

    def __init__(
        self,
        gate: PipelineGate,
        job_repository: JobRepository,
        quota_repository: QuotaRepository,
        media_tool: MediaTool,
        upload_dir: Path,
        preview_max_seconds: float = DEFAULT_PREVIEW_SECONDS,
    ):
        self.gate = gate
        self.job_repository = job_repository
        self.quota_repository = quota_repository
        self.media_tool = media_tool
        self.upload_dir = Path(upload_dir)
        self.preview_max_seconds = preview_max_seconds

    def submit_upload(
        self,
        user_id: str,
        role: UserRole,
        audio_path: str,
        original_filename: str,
        content_type: Optional[str] = None,
    ) -> str:
        """
        Store an uploaded recording and queue it for analysis.

        Args:
            user_id: Uploading user
            role: User's role (decides metering)
            audio_path: Path of the received file
            original_filename: Client-side file name
            content_type: MIME type reported by the client, if any

        Returns:
            New job id

        Raises:
            InvalidUploadError: File missing, empty, or not audio
            QuotaExceededError: Daily analysis limit reached (nothing is stored)
            JobStoreError, EnqueueError: The job could not be recorded or queued
        """
        source = Path(audio_path)
        if not source.is_file():
            raise InvalidUploadError("No audio file uploaded", path=audio_path)
        if source.stat().st_size == 0:
            raise InvalidUploadError("Uploaded file is empty", path=audio_path)
        if content_type is not None and not content_type.startswith("audio/"):
            raise InvalidUploadError("Uploaded file is not audio", content_type=content_type)

        job_id = str(uuid.uuid4())
        extension = Path(original_filename).suffix or DEFAULT_UPLOAD_EXTENSION
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        stored_path = self.upload_dir / f"{job_id}{extension}"
        shutil.copyfile(source, stored_path)

        try:
            self.gate.enqueue_analysis(user_id, role, job_id, str(stored_path), original_filename)
        except PodpaceError:
            stored_path.unlink(missing_ok=True)
            raise

        logger.info("upload_accepted", job_id=job_id, user_id=user_id, original_filename=original_filename)
        return job_id

    def request_adjustment(self, user_id: str, role: UserRole, job_id: str, targets: List[TargetSpec]) -> None:
        """
        Queue an analyzed job for adjustment with the given targets.

        Allowed from READY_FOR_INPUT, and from FAILED when the failure
        happened during adjustment.

        Raises:
            JobNotFoundError: Unknown job
            InvalidJobStateError: Job is not waiting for targets, or was queued
                by a concurrent request
            QuotaExceededError: Daily adjustment limit reached
        """
        job = self._require_job(job_id)

        if not job.awaiting_targets:
            raise InvalidJobStateError(
                "Job is not ready for adjustment",
                job_id=job_id,
                status=job.status.value,
            )

        self.gate.enqueue_adjustment(
            user_id,
            role,
            job_id,
            job.file_path,
            job.original_filename,
            targets,
        )

    def get_status(
        self,
        job_id: str,
        user_id: Optional[str] = None,
        role: Optional[UserRole] = None,
    ) -> Dict[str, Any]:
        """
        Job fields for polling, plus role and quota usage when a user is given.

        Raises:
            JobNotFoundError: Unknown job
        """
        job = self._require_job(job_id)
        status = job.to_dict()

        if user_id is not None and role is not None:
            status["role"] = role.value
            if role == UserRole.FREE:
                status["quota"] = self.get_quota(user_id)

        return status

    def get_quota(self, user_id: str) -> Dict[str, Dict[str, int]]:
        """Today's usage per quota kind."""
        return {kind.value: self.quota_repository.usage(user_id, kind).to_dict() for kind in QuotaKind}

    def get_download(self, job_id: str) -> DownloadInfo:
        """
        Locate a completed job's output.

        Raises:
            JobNotFoundError: Unknown job
            InvalidJobStateError: Job is not COMPLETE
            OutputMissingError: Output file no longer on disk
        """
        job = self._require_job(job_id)
        if job.status != JobStatus.COMPLETE or not job.output_file_path:
            raise InvalidJobStateError("Job is not complete", job_id=job_id, status=job.status.value)

        path = Path(job.output_file_path)
        if not path.is_file():
            raise OutputMissingError("Output file not found", job_id=job_id, path=str(path))

        stem = Path(job.original_filename or job_id).stem
        return DownloadInfo(path=path, filename=f"{stem}_normalized{path.suffix}")

    def get_preview(self, job_id: str, speaker_id: str) -> bytes:
        """
        Short MP3 sample of one speaker from the source recording.

        Uses the speaker's first segment with positive length, capped at
        preview_max_seconds.

        Raises:
            JobNotFoundError: Unknown job
            InvalidJobStateError: Job has no analysis yet
            SpeakerNotFoundError: No playable segment for the speaker
        """
        job = self._require_job(job_id)
        if not job.has_analysis or not job.file_path:
            raise InvalidJobStateError("Job has no analysis data", job_id=job_id, status=job.status.value)

        segment = next(
            (s for s in job.segments if s.speaker_id == speaker_id and s.duration_ms > 0),
            None,
        )
        if segment is None:
            raise SpeakerNotFoundError("No audio found for speaker", job_id=job_id, speaker_id=speaker_id)

        duration_s = min(segment.duration_ms / 1000, self.preview_max_seconds)
        return self.media_tool.excerpt(job.file_path, segment.start / 1000, duration_s)

    def _require_job(self, job_id: str) -> Job:
        job = self.job_repository.read(job_id)
        if job is None:
            raise JobNotFoundError("Job not found", job_id=job_id)
        return job
