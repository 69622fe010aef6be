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
Background task workers for the analysis and adjustment queues.

A TaskWorker runs in a background thread, polling one stage of the queue and
running each claimed task to completion with the stage's handler. A
WorkerPool runs a fixed number of workers for one stage: each job occupies
one worker for its whole run, so concurrency equals the number of workers.

Usage:
    from podpace.core.task_worker import WorkerPool
    from podpace.core.queue_manager import QueueManager, TaskStage
    from podpace.core.task_handlers import create_task_handlers

    queue_manager = QueueManager(db_path)
    handlers = create_task_handlers(analysis_worker, adjustment_worker)

    pool = WorkerPool(queue_manager, TaskStage.ANALYZE, handlers[TaskStage.ANALYZE], concurrency=2)
    pool.start()

    # ... application runs ...

    pool.stop()  # Graceful shutdown, waits for running jobs
"""

import threading
import time
import uuid
from typing import Callable, List, Optional

import structlog

from .queue_manager import QueueManager, Task, TaskStage

logger = structlog.get_logger(__name__)

# A handler runs one task and returns True if the job succeeded
TaskHandler = Callable[[Task], bool]

# Minutes before a claimed task counts as abandoned. Longer than the
# analysis poll budget (720 polls x 5s)
DEFAULT_STALE_TIMEOUT = 120


class TaskWorker:
    """
    Background worker that polls one queue stage and processes tasks.

    Thread-safety: Uses a daemon thread that can be gracefully stopped.
    A running task is never interrupted; stop() waits for it.
    """

    # Default configuration
    DEFAULT_POLL_INTERVAL = 2.0  # Seconds between queue checks

    def __init__(
        self,
        queue_manager: QueueManager,
        stage: TaskStage,
        handler: TaskHandler,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        name: Optional[str] = None,
    ):
        """
        Initialize task worker.

        Args:
            queue_manager: Queue manager for task operations
            stage: Queue stage this worker consumes
            handler: Function that runs one task
            poll_interval: Seconds between queue polls when idle
            name: Thread name (defaults to "TaskWorker-<stage>")
        """
        self.queue_manager = queue_manager
        self.stage = stage
        self.handler = handler
        self.poll_interval = poll_interval
        self.name = name or f"TaskWorker-{stage.value}"

        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._current_task: Optional[Task] = None
        self._lock = threading.Lock()
        self._wake = threading.Event()

    def start(self) -> None:
        """
        Start the worker thread.

        If the worker is already running, this is a no-op.
        """
        with self._lock:
            if self._running:
                logger.warning("task_worker_already_running", worker=self.name)
                return

            self._running = True
            self._wake.clear()
            self._thread = threading.Thread(target=self._worker_loop, daemon=True, name=self.name)
            self._thread.start()
            logger.info("task_worker_started", worker=self.name, stage=self.stage.value)

    def request_stop(self) -> None:
        """Ask the loop to exit after the current task, without waiting."""
        with self._lock:
            self._running = False
            self._wake.set()

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stop the worker thread gracefully.

        Args:
            timeout: Maximum seconds to wait for the current task (None waits
                until it finishes)
        """
        self.request_stop()

        if self._thread and self._thread.is_alive():
            logger.info("waiting_for_task_worker", worker=self.name, action="finishing_current_task")
            self._thread.join(timeout=timeout)

            if self._thread.is_alive():
                logger.warning("task_worker_timeout", worker=self.name, timeout_seconds=timeout)
            else:
                logger.info("task_worker_stopped", worker=self.name)

    def is_running(self) -> bool:
        """Check if worker is running."""
        return self._running and (self._thread is not None and self._thread.is_alive())

    def get_status(self) -> dict:
        """
        Get worker status information.

        Returns:
            Dictionary with worker status
        """
        return {
            "name": self.name,
            "stage": self.stage.value,
            "running": self.is_running(),
            "current_task": self._current_task.to_dict() if self._current_task else None,
            "poll_interval": self.poll_interval,
        }

    def _worker_loop(self) -> None:
        """Main worker loop that polls and processes tasks."""
        logger.info("task_worker_loop_started", worker=self.name)

        while self._running:
            try:
                task = self.queue_manager.get_next_task(self.stage)

                if task:
                    self._process_task(task)
                else:
                    # No tasks available, sleep before polling again
                    self._wake.wait(self.poll_interval)

            except Exception as e:
                # Unexpected error in worker loop - log and continue
                logger.exception("unexpected_error_in_worker_loop", worker=self.name, error=str(e))
                self._wake.wait(self.poll_interval)

        logger.info("task_worker_loop_ended", worker=self.name)

    def _process_task(self, task: Task) -> None:
        """
        Process a single task using the stage handler.

        Job-level failures are recorded in the job ledger by the handler; the
        queue row only records whether the run ended in success.

        Args:
            task: Task to process
        """
        self._current_task = task

        worker_id = str(uuid.uuid4())[:8]
        structlog.contextvars.bind_contextvars(
            worker_id=worker_id,
            task_id=task.id,
            job_id=task.job_id,
            stage=task.stage.value,
        )

        try:
            logger.info("task_processing_started")
            started = time.monotonic()

            try:
                succeeded = self.handler(task)
            except Exception as e:
                # Handlers convert job errors to ledger writes; anything that
                # still escapes is a bug in the handler wiring
                logger.exception("task_unexpected_error", error=str(e))
                self.queue_manager.fail_task(task.id, str(e))
                return

            duration = round(time.monotonic() - started, 2)
            if succeeded:
                self.queue_manager.complete_task(task.id)
                logger.info("task_completed_successfully", duration_seconds=duration)
            else:
                self.queue_manager.fail_task(task.id, "Job failed; see job ledger for details")
                logger.warning("task_job_failed", duration_seconds=duration)

        finally:
            self._current_task = None
            structlog.contextvars.clear_contextvars()


class WorkerPool:
    """
    Fixed-size set of TaskWorkers consuming one stage.

    On start the pool resets tasks left in 'processing' for longer than
    stale_timeout_minutes, so a job interrupted by a crash or restart runs
    again from the beginning. Tasks claimed more recently are left alone:
    another process may still be working on them.
    """

    def __init__(
        self,
        queue_manager: QueueManager,
        stage: TaskStage,
        handler: TaskHandler,
        concurrency: int = 2,
        poll_interval: float = TaskWorker.DEFAULT_POLL_INTERVAL,
        stale_timeout_minutes: int = DEFAULT_STALE_TIMEOUT,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self.queue_manager = queue_manager
        self.stage = stage
        self.stale_timeout_minutes = stale_timeout_minutes
        self.workers: List[TaskWorker] = [
            TaskWorker(
                queue_manager,
                stage,
                handler,
                poll_interval=poll_interval,
                name=f"TaskWorker-{stage.value}-{index + 1}",
            )
            for index in range(concurrency)
        ]

    def start(self) -> None:
        """Requeue interrupted tasks, then start every worker."""
        reset_count = self.queue_manager.reset_stale_tasks(
            stage=self.stage, timeout_minutes=self.stale_timeout_minutes
        )
        if reset_count > 0:
            logger.info("interrupted_tasks_requeued", stage=self.stage.value, count=reset_count)

        for worker in self.workers:
            worker.start()

        logger.info("worker_pool_started", stage=self.stage.value, concurrency=len(self.workers))

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop all workers, waiting for in-flight jobs to finish."""
        logger.info("worker_pool_stopping", stage=self.stage.value)

        # Signal every worker first so idle ones exit while busy ones finish
        for worker in self.workers:
            worker.request_stop()
        for worker in self.workers:
            worker.stop(timeout=timeout)

        logger.info("worker_pool_stopped", stage=self.stage.value)

    def is_running(self) -> bool:
        return any(worker.is_running() for worker in self.workers)

    def get_status(self) -> dict:
        return {
            "stage": self.stage.value,
            "concurrency": len(self.workers),
            "workers": [worker.get_status() for worker in self.workers],
        }
