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

"""Unit tests for stage task handlers."""

from unittest.mock import MagicMock

from podpace.core.queue_manager import Task, TaskStage, TaskStatus
from podpace.core.task_handlers import create_task_handlers, handle_adjust, handle_analyze
from podpace.models.job import JobStage, JobStatus, TargetSpec


def make_task(stage, payload):
    return Task(id="t" * 36, job_id="job-1", stage=stage, status=TaskStatus.PROCESSING, payload=payload)


class TestHandleAnalyze:
    def test_runs_worker_with_payload(self):
        worker = MagicMock()
        worker.process.return_value = True

        result = handle_analyze(
            make_task(TaskStage.ANALYZE, {"file_path": "/u/job-1.mp3", "original_filename": "talk.mp3"}),
            worker,
        )

        assert result is True
        worker.process.assert_called_once_with("job-1", "/u/job-1.mp3", "talk.mp3")

    def test_malformed_payload_fails_job(self, job_repository):
        worker = MagicMock()
        worker.job_repository = job_repository

        assert handle_analyze(make_task(TaskStage.ANALYZE, {}), worker) is False

        job = job_repository.read("job-1")
        assert job.status == JobStatus.FAILED
        assert job.failed_stage == JobStage.ANALYSIS
        worker.process.assert_not_called()


class TestHandleAdjust:
    def test_parses_targets(self):
        worker = MagicMock()
        worker.process.return_value = False
        payload = {
            "file_path": "/u/job-1.mp3",
            "original_filename": "talk.mp3",
            "targets": [{"id": "Speaker_A", "target_wpm": 120}],
        }

        assert handle_adjust(make_task(TaskStage.ADJUST, payload), worker) is False

        worker.process.assert_called_once_with(
            "job-1", "/u/job-1.mp3", "talk.mp3", [TargetSpec(id="Speaker_A", target_wpm=120)]
        )

    def test_invalid_target_fails_job(self, job_repository):
        worker = MagicMock()
        worker.job_repository = job_repository
        payload = {
            "file_path": "/u/job-1.mp3",
            "original_filename": "talk.mp3",
            "targets": [{"id": "Speaker_A", "target_wpm": 9000}],
        }

        assert handle_adjust(make_task(TaskStage.ADJUST, payload), worker) is False

        job = job_repository.read("job-1")
        assert job.status == JobStatus.FAILED
        assert job.failed_stage == JobStage.ADJUSTMENT


class TestCreateTaskHandlers:
    def test_registers_only_given_workers(self):
        assert set(create_task_handlers(analysis_worker=MagicMock())) == {TaskStage.ANALYZE}
        assert set(create_task_handlers(adjustment_worker=MagicMock())) == {TaskStage.ADJUST}

    def test_handlers_dispatch_to_workers(self):
        analysis_worker = MagicMock()
        adjustment_worker = MagicMock()
        handlers = create_task_handlers(analysis_worker, adjustment_worker)

        handlers[TaskStage.ANALYZE](
            make_task(TaskStage.ANALYZE, {"file_path": "/a.mp3", "original_filename": "a.mp3"})
        )

        analysis_worker.process.assert_called_once()
        adjustment_worker.process.assert_not_called()
