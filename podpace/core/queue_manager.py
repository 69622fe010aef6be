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
SQLite-based task queue for the analysis and adjustment workers.

The queue only decides which job a worker picks up next. Job state lives in
the job ledger; a task row carries just enough payload for a worker to run
the job without a second lookup.

Usage:
    from podpace.core.queue_manager import QueueManager, TaskStage

    queue = QueueManager(db_path="./data/queue.db")

    # Gate enqueues a job
    task = queue.add_task(job_id="abc-123", stage=TaskStage.ANALYZE, payload={...})

    # Worker picks up next task (atomically marks as processing)
    task = queue.get_next_task(TaskStage.ANALYZE)
    if task:
        try:
            # Do work...
            queue.complete_task(task.id)
        except Exception as e:
            queue.fail_task(task.id, str(e))
"""

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class TaskStage(str, Enum):
    """Queues a job can be placed on."""

    ANALYZE = "analyze"
    ADJUST = "adjust"


class TaskStatus(str, Enum):
    """Status of a queued task."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class Task:
    """Represents a queued task."""

    id: str
    job_id: str
    stage: TaskStage
    status: TaskStatus
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    # Worker input (file_path, original_filename, targets)
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert task to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "job_id": self.job_id,
            "stage": self.stage.value,
            "status": self.status.value,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "payload": self.payload,
        }


class QueueManager:
    """
    SQLite-based task queue.

    Thread-safety: Uses per-operation connections with atomic transactions,
    so any number of worker threads (or processes) may share one database file.
    """

    def __init__(self, db_path: str):
        """
        Initialize queue manager.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self._ensure_table()
        logger.info(f"QueueManager initialized: {self.db_path}")

    @contextmanager
    def _get_connection(self):
        """Get database connection with proper setup."""
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row

        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _ensure_table(self):
        """Create tasks table if not exists."""
        with self._get_connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY NOT NULL,
                    job_id TEXT NOT NULL,
                    stage TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    error_message TEXT NULL,
                    payload TEXT NULL,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL,
                    started_at TIMESTAMP NULL,
                    completed_at TIMESTAMP NULL,
                    CHECK (length(id) = 36),
                    CHECK (stage IN ('analyze', 'adjust'))
                )
            """
            )

            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_tasks_stage_status
                ON tasks(stage, status, created_at ASC)
            """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_tasks_job_id
                ON tasks(job_id)
            """
            )

            logger.debug("Tasks table ensured")

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        """Convert database row to Task object."""
        payload = {}
        if row["payload"]:
            try:
                payload = json.loads(row["payload"])
            except (json.JSONDecodeError, TypeError):
                logger.warning(f"Failed to parse task payload for task {row['id']}")

        return Task(
            id=row["id"],
            job_id=row["job_id"],
            stage=TaskStage(row["stage"]),
            status=TaskStatus(row["status"]),
            error_message=row["error_message"],
            created_at=datetime.fromisoformat(row["created_at"]) if row["created_at"] else None,
            updated_at=datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None,
            started_at=datetime.fromisoformat(row["started_at"]) if row["started_at"] else None,
            completed_at=datetime.fromisoformat(row["completed_at"]) if row["completed_at"] else None,
            payload=payload,
        )

    def add_task(self, job_id: str, stage: TaskStage, payload: Optional[Dict[str, Any]] = None) -> Task:
        """
        Add a new task to the queue.

        Args:
            job_id: ID of the job to process
            stage: Queue to place the job on
            payload: Worker input, JSON-serializable

        Returns:
            The created Task object
        """
        task_id = str(uuid.uuid4())
        now = _now().isoformat()
        payload = payload or {}

        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO tasks (id, job_id, stage, status, payload, created_at, updated_at)
                VALUES (?, ?, ?, 'pending', ?, ?, ?)
            """,
                (task_id, job_id, stage.value, json.dumps(payload), now, now),
            )

        logger.info(f"Task queued: {task_id} - {stage.value} for job {job_id}")

        return Task(
            id=task_id,
            job_id=job_id,
            stage=stage,
            status=TaskStatus.PENDING,
            payload=payload,
            created_at=datetime.fromisoformat(now),
            updated_at=datetime.fromisoformat(now),
        )

    def get_next_task(self, stage: TaskStage) -> Optional[Task]:
        """
        Get the oldest pending task for a stage, atomically marking it as 'processing'.

        Args:
            stage: Queue to take from

        Returns:
            Task if one is available, None otherwise
        """
        with self._get_connection() as conn:
            now = _now().isoformat()

            # SQLite doesn't have UPDATE...RETURNING on older versions, so we use
            # a transaction with immediate locking to prevent two workers
            # claiming the same row
            conn.execute("BEGIN IMMEDIATE")

            try:
                cursor = conn.execute(
                    """
                    SELECT * FROM tasks
                    WHERE stage = ? AND status = 'pending'
                    ORDER BY created_at ASC, rowid ASC
                    LIMIT 1
                """,
                    (stage.value,),
                )

                row = cursor.fetchone()
                if not row:
                    conn.rollback()
                    return None

                task_id = row["id"]

                conn.execute(
                    """
                    UPDATE tasks
                    SET status = 'processing', started_at = ?, updated_at = ?
                    WHERE id = ?
                """,
                    (now, now, task_id),
                )

                conn.commit()

                task = self._row_to_task(row)
                task.status = TaskStatus.PROCESSING
                task.started_at = datetime.fromisoformat(now)
                task.updated_at = datetime.fromisoformat(now)

                logger.info(f"Task claimed: {task_id} - {task.stage.value} for job {task.job_id}")
                return task

            except Exception:
                conn.rollback()
                raise

    def complete_task(self, task_id: str) -> None:
        """
        Mark a task as completed.

        Args:
            task_id: ID of the task to complete
        """
        now = _now().isoformat()

        with self._get_connection() as conn:
            conn.execute(
                """
                UPDATE tasks
                SET status = 'completed', completed_at = ?, updated_at = ?
                WHERE id = ?
            """,
                (now, now, task_id),
            )

        logger.info(f"Task completed: {task_id}")

    def fail_task(self, task_id: str, error_message: str) -> None:
        """
        Mark a task as failed.

        Args:
            task_id: ID of the task that failed
            error_message: Error description
        """
        now = _now().isoformat()

        with self._get_connection() as conn:
            conn.execute(
                """
                UPDATE tasks
                SET status = 'failed', error_message = ?, completed_at = ?, updated_at = ?
                WHERE id = ?
            """,
                (error_message, now, now, task_id),
            )

        logger.error(f"Task failed: {task_id} - {error_message}")

    def get_task(self, task_id: str) -> Optional[Task]:
        """
        Get a task by ID.

        Args:
            task_id: ID of the task to retrieve

        Returns:
            Task if found, None otherwise
        """
        with self._get_connection() as conn:
            cursor = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,))
            row = cursor.fetchone()

            if not row:
                return None

            return self._row_to_task(row)

    def get_pending_count(self, stage: Optional[TaskStage] = None) -> int:
        """
        Get count of pending tasks.

        Args:
            stage: Optionally count only one stage

        Returns:
            Number of pending tasks
        """
        with self._get_connection() as conn:
            if stage:
                cursor = conn.execute(
                    "SELECT COUNT(*) as count FROM tasks WHERE status = 'pending' AND stage = ?",
                    (stage.value,),
                )
            else:
                cursor = conn.execute("SELECT COUNT(*) as count FROM tasks WHERE status = 'pending'")
            return cursor.fetchone()["count"]

    def get_queue_stats(self) -> dict:
        """
        Get queue statistics.

        Returns:
            Dictionary mapping stage to a {status: count} dict
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                SELECT
                    stage,
                    status,
                    COUNT(*) as count
                FROM tasks
                GROUP BY stage, status
            """
            )

            stats = {stage.value: {status.value: 0 for status in TaskStatus} for stage in TaskStage}
            for row in cursor.fetchall():
                stats[row["stage"]][row["status"]] = row["count"]

            return stats

    def cleanup_old_tasks(self, days: int = 7) -> int:
        """
        Delete completed/failed tasks older than specified days.

        Args:
            days: Delete tasks older than this many days

        Returns:
            Number of tasks deleted
        """
        cutoff = (_now() - timedelta(days=days)).isoformat()

        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                DELETE FROM tasks
                WHERE status IN ('completed', 'failed')
                AND completed_at < ?
            """,
                (cutoff,),
            )

            deleted = cursor.rowcount
            if deleted > 0:
                logger.info(f"Cleaned up {deleted} old tasks")

            return deleted

    def reset_stale_tasks(self, stage: Optional[TaskStage] = None, timeout_minutes: int = 0) -> int:
        """
        Reset tasks left in 'processing' back to pending.

        A worker that crashed or was killed mid-job leaves its task claimed.
        Called when a worker pool starts, so the whole job runs again from the
        beginning. With the default timeout of 0 every processing task of the
        stage is reset, which is right when this process is the only consumer
        of the stage.

        Args:
            stage: Only reset tasks of this stage (default: all stages)
            timeout_minutes: Only reset tasks claimed longer ago than this

        Returns:
            Number of tasks reset
        """
        now = _now()
        cutoff = (now - timedelta(minutes=timeout_minutes)).isoformat()

        query = """
            UPDATE tasks
            SET status = 'pending', started_at = NULL, updated_at = ?
            WHERE status = 'processing'
            AND started_at <= ?
        """
        params: List[Any] = [now.isoformat(), cutoff]
        if stage:
            query += " AND stage = ?"
            params.append(stage.value)

        with self._get_connection() as conn:
            cursor = conn.execute(query, params)

            reset = cursor.rowcount
            if reset > 0:
                logger.warning(f"Reset {reset} stale tasks back to pending")

            return reset
