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
Admission and enqueueing for both pipeline stages.

The gate runs synchronously inside the caller's request. It meters the
user's daily quota for the stage, writes the job's initial status for that
stage, and only then places the job on the stage's queue. A request denied
by quota writes nothing and enqueues nothing.
"""

import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, List

from structlog import get_logger

from ..core.queue_manager import QueueManager, Task, TaskStage
from ..models.job import JobStage, JobStatus, JobUpdate, QuotaKind, TargetSpec, UserRole
from ..repositories.job_repository import JobRepository
from ..repositories.quota_repository import QuotaRepository
from ..utils.exceptions import EnqueueError, InvalidJobStateError, JobStoreError, QuotaExceededError

logger = get_logger(__name__)


class PipelineGate:
    """Meters usage and enqueues jobs for analysis and adjustment."""

    def __init__(
        self,
        job_repository: JobRepository,
        quota_repository: QuotaRepository,
        queue_manager: QueueManager,
    ):
        self.job_repository = job_repository
        self.quota_repository = quota_repository
        self.queue_manager = queue_manager

    def admit(self, user_id: str, role: UserRole, stage: JobStage) -> None:
        """
        Spend one unit of the stage's quota, or raise.

        PAID users are never metered.

        Raises:
            QuotaExceededError: The user's daily limit for the stage is used up
        """
        if role.is_unlimited:
            logger.debug("quota_bypassed", user_id=user_id, role=role.value, stage=stage.value)
            return

        kind = QuotaKind.for_stage(stage)
        if self.quota_repository.check_and_consume(user_id, kind):
            return

        limit = self.quota_repository.limit_for(kind)
        reset_seconds = self.quota_repository.seconds_until_reset()
        logger.info("quota_denied", user_id=user_id, kind=kind.value, limit=limit, reset_seconds=reset_seconds)
        raise QuotaExceededError(
            f"Daily {kind.value} limit of {limit} reached",
            kind=kind.value,
            limit=limit,
            used=self.quota_repository.peek(user_id, kind),
            reset_seconds=reset_seconds,
        )

    def enqueue_analysis(
        self,
        user_id: str,
        role: UserRole,
        job_id: str,
        file_path: str,
        original_filename: str,
    ) -> Task:
        """
        Admit, record the job as PENDING, and queue it for analysis.

        Raises:
            QuotaExceededError: Daily analysis limit reached
            JobStoreError: The PENDING record could not be written (nothing queued)
            EnqueueError: The task could not be queued (job marked FAILED)
        """
        self.admit(user_id, role, JobStage.ANALYSIS)

        recorded = self.job_repository.update(
            job_id,
            JobStatus.PENDING,
            JobUpdate(
                user_id=user_id,
                original_filename=original_filename,
                file_path=file_path,
                created_at=datetime.now(timezone.utc),
            ),
        )
        if not recorded:
            logger.warning("analysis_not_enqueued", job_id=job_id, user_id=user_id, reason="ledger_write_failed")
            raise JobStoreError("Failed to record job", job_id=job_id)

        task = self._add_task(
            job_id,
            TaskStage.ANALYZE,
            JobStage.ANALYSIS,
            {"file_path": file_path, "original_filename": original_filename},
        )
        logger.info("analysis_enqueued", job_id=job_id, user_id=user_id, task_id=task.id)
        return task

    def enqueue_adjustment(
        self,
        user_id: str,
        role: UserRole,
        job_id: str,
        file_path: str,
        original_filename: str,
        targets: List[TargetSpec],
    ) -> Task:
        """
        Admit, record the targets as QUEUED_FOR_ADJUSTMENT, and queue the job.

        The status write is checked against the stored job, so of two
        concurrent requests for one job only one is queued.

        Raises:
            QuotaExceededError: Daily adjustment limit reached
            InvalidJobStateError: The job is no longer waiting for targets
            EnqueueError: The task could not be queued (job marked FAILED)
        """
        self.admit(user_id, role, JobStage.ADJUSTMENT)

        queued = self.job_repository.transition(
            job_id,
            lambda job: job.awaiting_targets,
            JobStatus.QUEUED_FOR_ADJUSTMENT,
            JobUpdate(targets=targets, error=None, failed_stage=None),
        )
        if not queued:
            logger.warning("adjustment_not_enqueued", job_id=job_id, user_id=user_id, reason="job_not_awaiting_targets")
            raise InvalidJobStateError("Job is not ready for adjustment", job_id=job_id)

        task = self._add_task(
            job_id,
            TaskStage.ADJUST,
            JobStage.ADJUSTMENT,
            {
                "file_path": file_path,
                "original_filename": original_filename,
                "targets": [target.model_dump(mode="json") for target in targets],
            },
        )
        logger.info(
            "adjustment_enqueued",
            job_id=job_id,
            user_id=user_id,
            task_id=task.id,
            target_count=len(targets),
        )
        return task

    def _add_task(self, job_id: str, stage: TaskStage, job_stage: JobStage, payload: Dict[str, Any]) -> Task:
        """Queue a task; a queue failure leaves the job FAILED rather than stuck."""
        try:
            return self.queue_manager.add_task(job_id, stage, payload=payload)
        except sqlite3.Error as e:
            logger.error("enqueue_failed", job_id=job_id, stage=stage.value, error=str(e))
            self.job_repository.update(
                job_id,
                JobStatus.FAILED,
                JobUpdate(error=f"Failed to enqueue job: {e}", failed_stage=job_stage),
            )
            raise EnqueueError("Failed to enqueue job", job_id=job_id, stage=stage.value) from e
