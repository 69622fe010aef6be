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

"""Unit tests for the SQLite task queue."""

import sqlite3
import threading
from datetime import datetime, timedelta, timezone

from podpace.core.queue_manager import QueueManager, TaskStage, TaskStatus


class TestAddAndClaim:
    def test_add_task_is_pending(self, queue_manager):
        task = queue_manager.add_task("job-1", TaskStage.ANALYZE, payload={"file_path": "/a.mp3"})

        stored = queue_manager.get_task(task.id)
        assert stored.status == TaskStatus.PENDING
        assert stored.job_id == "job-1"
        assert stored.payload == {"file_path": "/a.mp3"}

    def test_get_next_task_claims_oldest_for_stage(self, queue_manager):
        first = queue_manager.add_task("job-1", TaskStage.ANALYZE)
        queue_manager.add_task("job-2", TaskStage.ADJUST)
        queue_manager.add_task("job-3", TaskStage.ANALYZE)

        task = queue_manager.get_next_task(TaskStage.ANALYZE)

        assert task.id == first.id
        assert task.status == TaskStatus.PROCESSING
        assert queue_manager.get_task(first.id).status == TaskStatus.PROCESSING

    def test_stages_are_separate_queues(self, queue_manager):
        queue_manager.add_task("job-1", TaskStage.ADJUST)

        assert queue_manager.get_next_task(TaskStage.ANALYZE) is None
        assert queue_manager.get_next_task(TaskStage.ADJUST).job_id == "job-1"

    def test_empty_queue_returns_none(self, queue_manager):
        assert queue_manager.get_next_task(TaskStage.ANALYZE) is None

    def test_concurrent_claims_never_share_a_task(self, queue_manager):
        for index in range(10):
            queue_manager.add_task(f"job-{index}", TaskStage.ANALYZE)

        claimed = []
        lock = threading.Lock()

        def claim():
            while True:
                task = queue_manager.get_next_task(TaskStage.ANALYZE)
                if task is None:
                    return
                with lock:
                    claimed.append(task.id)

        threads = [threading.Thread(target=claim) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(claimed) == 10
        assert len(set(claimed)) == 10


class TestCompletion:
    def test_complete_task(self, queue_manager):
        task = queue_manager.add_task("job-1", TaskStage.ANALYZE)
        queue_manager.get_next_task(TaskStage.ANALYZE)

        queue_manager.complete_task(task.id)

        stored = queue_manager.get_task(task.id)
        assert stored.status == TaskStatus.COMPLETED
        assert stored.completed_at is not None

    def test_fail_task_records_message(self, queue_manager):
        task = queue_manager.add_task("job-1", TaskStage.ADJUST)

        queue_manager.fail_task(task.id, "rubberband missing")

        stored = queue_manager.get_task(task.id)
        assert stored.status == TaskStatus.FAILED
        assert stored.error_message == "rubberband missing"


class TestRecovery:
    def test_reset_requeues_interrupted_tasks(self, queue_manager):
        task = queue_manager.add_task("job-1", TaskStage.ANALYZE)
        queue_manager.get_next_task(TaskStage.ANALYZE)

        assert queue_manager.reset_stale_tasks(stage=TaskStage.ANALYZE) == 1

        assert queue_manager.get_task(task.id).status == TaskStatus.PENDING
        assert queue_manager.get_next_task(TaskStage.ANALYZE).id == task.id

    def test_reset_only_touches_given_stage(self, queue_manager):
        queue_manager.add_task("job-1", TaskStage.ADJUST)
        queue_manager.get_next_task(TaskStage.ADJUST)

        assert queue_manager.reset_stale_tasks(stage=TaskStage.ANALYZE) == 0

    def test_reset_respects_timeout(self, queue_manager):
        queue_manager.add_task("job-1", TaskStage.ANALYZE)
        queue_manager.get_next_task(TaskStage.ANALYZE)

        assert queue_manager.reset_stale_tasks(timeout_minutes=30) == 0

    def test_state_survives_a_new_manager(self, tmp_path):
        db_path = str(tmp_path / "queue.db")
        QueueManager(db_path).add_task("job-1", TaskStage.ANALYZE, payload={"original_filename": "a.mp3"})

        task = QueueManager(db_path).get_next_task(TaskStage.ANALYZE)

        assert task.payload == {"original_filename": "a.mp3"}


class TestStats:
    def test_queue_stats_by_stage_and_status(self, queue_manager):
        done = queue_manager.add_task("job-1", TaskStage.ANALYZE)
        queue_manager.complete_task(done.id)
        queue_manager.add_task("job-2", TaskStage.ANALYZE)
        queue_manager.add_task("job-3", TaskStage.ADJUST)

        stats = queue_manager.get_queue_stats()

        assert stats["analyze"]["completed"] == 1
        assert stats["analyze"]["pending"] == 1
        assert stats["adjust"]["pending"] == 1
        assert stats["adjust"]["failed"] == 0

    def test_pending_count(self, queue_manager):
        queue_manager.add_task("job-1", TaskStage.ANALYZE)
        queue_manager.add_task("job-2", TaskStage.ADJUST)

        assert queue_manager.get_pending_count() == 2
        assert queue_manager.get_pending_count(TaskStage.ADJUST) == 1

    def test_cleanup_old_tasks(self, queue_manager):
        old = queue_manager.add_task("job-1", TaskStage.ANALYZE)
        queue_manager.complete_task(old.id)
        recent = queue_manager.add_task("job-2", TaskStage.ANALYZE)
        queue_manager.complete_task(recent.id)

        long_ago = (datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(days=30)).isoformat()
        conn = sqlite3.connect(str(queue_manager.db_path))
        conn.execute("UPDATE tasks SET completed_at = ? WHERE id = ?", (long_ago, old.id))
        conn.commit()
        conn.close()

        assert queue_manager.cleanup_old_tasks(days=7) == 1
        assert queue_manager.get_task(old.id) is None
        assert queue_manager.get_task(recent.id) is not None
