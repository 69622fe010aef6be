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
Analysis stage: diarized transcription plus per-speaker WPM.

Status sequence written to the job ledger:
    PROCESSING_UPLOAD_CLOUD -> PROCESSING_CLOUD_ANALYSIS
    -> PROCESSING_WPM_CALCULATION -> READY_FOR_INPUT

Any failure ends the job in FAILED with failed_stage=analysis. process()
never raises; the ledger is the only place a caller learns the outcome.
"""

import time
from typing import Callable

import requests
import structlog

from ..models.job import JobStage, JobStatus, JobUpdate
from ..models.transcription import TranscriptResult, TranscriptStatus
from ..repositories.job_repository import JobRepository
from ..utils.exceptions import TranscriptionError, TranscriptionTimeoutError
from .transcription_client import TranscriptionService
from .wpm import build_segments, compute_speaker_stats

logger = structlog.get_logger(__name__)

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_MAX_POLL_ATTEMPTS = 720  # 1 hour at 5s


class AnalysisWorker:
    """Runs the analysis stage for one job at a time."""

    def __init__(
        self,
        job_repository: JobRepository,
        transcription_service: TranscriptionService,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_poll_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize worker.

        Args:
            job_repository: Job ledger
            transcription_service: Diarized transcription collaborator
            poll_interval: Seconds between transcript polls
            max_poll_attempts: Poll budget before giving up
            sleep: Sleep function; injectable for tests
        """
        self.job_repository = job_repository
        self.transcription_service = transcription_service
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self.sleep = sleep

    def process(self, job_id: str, source_file_path: str, original_filename: str) -> bool:
        """
        Analyze one uploaded file.

        Returns:
            True if the job reached READY_FOR_INPUT, False if it FAILED
        """
        log = logger.bind(job_id=job_id)
        log.info("analysis_started", original_filename=original_filename)
        started = time.monotonic()

        try:
            self.job_repository.update(job_id, JobStatus.PROCESSING_UPLOAD_CLOUD)
            audio_url = self.transcription_service.upload(source_file_path)

            self.job_repository.update(job_id, JobStatus.PROCESSING_CLOUD_ANALYSIS)
            transcript_id = self.transcription_service.submit(audio_url)
            self.job_repository.update(
                job_id,
                JobStatus.PROCESSING_CLOUD_ANALYSIS,
                JobUpdate(transcript_id=transcript_id),
            )
            log.info("transcription_submitted", transcript_id=transcript_id)

            result = self.wait_for_transcript(transcript_id)

            self.job_repository.update(job_id, JobStatus.PROCESSING_WPM_CALCULATION)
            speakers = compute_speaker_stats(result.utterances)
            segments = build_segments(result.utterances)

            self.job_repository.update(
                job_id,
                JobStatus.READY_FOR_INPUT,
                JobUpdate(speakers=speakers, segments=segments),
            )
            log.info(
                "analysis_completed",
                speaker_count=len(speakers),
                segment_count=len(segments),
                duration_seconds=round(time.monotonic() - started, 2),
            )
            return True

        except Exception as e:
            log.error("analysis_failed", error=str(e), error_type=type(e).__name__, exc_info=True)
            self.job_repository.update(
                job_id,
                JobStatus.FAILED,
                JobUpdate(error=str(e) or type(e).__name__, failed_stage=JobStage.ANALYSIS),
            )
            return False

    def wait_for_transcript(self, transcript_id: str) -> TranscriptResult:
        """
        Poll until the transcript completes.

        Transport errors and non-terminal statuses are retried after
        poll_interval; a service-reported error is terminal.

        Raises:
            TranscriptionError: The service reported an error
            TranscriptionTimeoutError: The poll budget ran out
        """
        for attempt in range(1, self.max_poll_attempts + 1):
            try:
                result = self.transcription_service.poll(transcript_id)
            except requests.exceptions.RequestException as e:
                logger.warning("transcript_poll_error", transcript_id=transcript_id, attempt=attempt, error=str(e))
            else:
                if result.status == TranscriptStatus.COMPLETED:
                    logger.info("transcript_ready", transcript_id=transcript_id, polls=attempt)
                    return result
                if result.status == TranscriptStatus.ERROR:
                    raise TranscriptionError(
                        f"Transcription failed: {result.error or 'unknown error'}",
                        transcript_id=transcript_id,
                    )
                logger.debug(
                    "transcript_pending", transcript_id=transcript_id, attempt=attempt, status=result.status.value
                )

            if attempt < self.max_poll_attempts:
                self.sleep(self.poll_interval)

        raise TranscriptionTimeoutError(
            f"Transcript not ready after {self.max_poll_attempts} polls",
            transcript_id=transcript_id,
        )
