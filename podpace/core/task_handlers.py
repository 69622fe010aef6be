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
Task handlers for the two queue stages.

Each handler unpacks a task's payload and runs the matching worker. Workers
record the job outcome in the job ledger themselves; a handler only returns
whether the job succeeded so the TaskWorker can close the queue row.

Usage:
    from podpace.core.task_handlers import create_task_handlers

    handlers = create_task_handlers(analysis_worker, adjustment_worker)
    # handlers is a dict mapping TaskStage -> handler function
"""

from typing import Dict, Optional

from pydantic import ValidationError
from structlog import get_logger

from ..models.job import JobStage, JobStatus, JobUpdate, TargetSpec
from ..repositories.job_repository import JobRepository
from .adjustment_worker import AdjustmentWorker
from .analysis_worker import AnalysisWorker
from .queue_manager import Task, TaskStage
from .task_worker import TaskHandler

logger = get_logger(__name__)


def _fail_malformed(task: Task, repository: JobRepository, stage: JobStage, error: Exception) -> bool:
    logger.error("task_payload_invalid", error=str(error))
    repository.update(
        task.job_id,
        JobStatus.FAILED,
        JobUpdate(error=f"Invalid task payload: {error}", failed_stage=stage),
    )
    return False


def handle_analyze(task: Task, worker: AnalysisWorker) -> bool:
    """Run analysis for the job referenced by the task."""
    try:
        file_path = task.payload["file_path"]
        original_filename = task.payload["original_filename"]
    except KeyError as e:
        return _fail_malformed(task, worker.job_repository, JobStage.ANALYSIS, e)

    return worker.process(task.job_id, file_path, original_filename)


def handle_adjust(task: Task, worker: AdjustmentWorker) -> bool:
    """Run adjustment for the job referenced by the task."""
    try:
        file_path = task.payload["file_path"]
        original_filename = task.payload["original_filename"]
        targets = [TargetSpec.model_validate(raw) for raw in task.payload.get("targets") or []]
    except (KeyError, ValidationError) as e:
        return _fail_malformed(task, worker.job_repository, JobStage.ADJUSTMENT, e)

    return worker.process(task.job_id, file_path, original_filename, targets)


def create_task_handlers(
    analysis_worker: Optional[AnalysisWorker] = None,
    adjustment_worker: Optional[AdjustmentWorker] = None,
) -> Dict[TaskStage, TaskHandler]:
    """
    Create task handlers dictionary bound to the given workers.

    A worker process usually serves one stage, so only the stages whose
    worker is given get a handler.

    Returns:
        Dictionary mapping TaskStage to handler function
    """
    handlers: Dict[TaskStage, TaskHandler] = {}
    if analysis_worker is not None:
        handlers[TaskStage.ANALYZE] = lambda task: handle_analyze(task, analysis_worker)
    if adjustment_worker is not None:
        handlers[TaskStage.ADJUST] = lambda task: handle_adjust(task, adjustment_worker)
    return handlers
