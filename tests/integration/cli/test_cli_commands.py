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

"""End-to-end tests for the podpace command group against a fake Redis."""

import json

import click
import fakeredis
import pytest
import structlog
from click.testing import CliRunner

from podpace import cli
from podpace.models.job import JobStatus, JobUpdate, Segment, SpeakerStat
from podpace.repositories.redis_job_repository import RedisJobRepository


@pytest.fixture
def fake_redis(monkeypatch):
    server = fakeredis.FakeRedis(decode_responses=True)
    monkeypatch.setattr(cli.redis.Redis, "from_url", lambda *args, **kwargs: server)
    return server


@pytest.fixture
def runner(monkeypatch, tmp_path, fake_redis):
    monkeypatch.setenv("STORAGE_PATH", str(tmp_path / "data"))
    monkeypatch.delenv("DATABASE_PATH", raising=False)
    monkeypatch.setattr(
        cli,
        "configure_structlog",
        lambda: structlog.configure(logger_factory=structlog.ReturnLoggerFactory()),
    )
    yield CliRunner()
    structlog.reset_defaults()


@pytest.fixture
def audio(tmp_path):
    path = tmp_path / "interview.mp3"
    path.write_bytes(b"ID3 audio bytes")
    return path


def submit(runner, audio, user="user-1"):
    result = runner.invoke(cli.main, ["submit", str(audio), "--user", user])
    assert result.exit_code == 0, result.output
    return result.output.strip().rsplit(": ", 1)[-1]


class TestParseTarget:
    def test_valid(self):
        spec = cli.parse_target("Speaker_A=120")
        assert spec.id == "Speaker_A"
        assert spec.target_wpm == 120

    @pytest.mark.parametrize("value", ["Speaker_A", "=120", "Speaker_A=fast"])
    def test_invalid(self, value):
        with pytest.raises(click.BadParameter):
            cli.parse_target(value)


class TestSubmitAndStatus:
    def test_submit_creates_pending_job(self, runner, audio):
        job_id = submit(runner, audio)

        result = runner.invoke(cli.main, ["status", job_id])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["job_id"] == job_id
        assert data["status"] == "PENDING"
        assert data["original_filename"] == "interview.mp3"

    def test_status_with_user_includes_quota(self, runner, audio):
        job_id = submit(runner, audio)

        result = runner.invoke(cli.main, ["status", job_id, "--user", "user-1"])

        data = json.loads(result.output)
        assert data["role"] == "FREE"
        assert data["quota"]["analysis"]["used"] == 1

    def test_fourth_submission_exits_with_quota_code(self, runner, audio):
        for _ in range(3):
            submit(runner, audio)

        result = runner.invoke(cli.main, ["submit", str(audio), "--user", "user-1"])

        assert result.exit_code == 2
        assert "Resets in" in result.output

    def test_paid_user_is_not_limited(self, runner, audio):
        for _ in range(5):
            result = runner.invoke(cli.main, ["submit", str(audio), "--user", "user-1", "--role", "paid"])
            assert result.exit_code == 0, result.output

    def test_unknown_job(self, runner):
        result = runner.invoke(cli.main, ["status", "missing"])

        assert result.exit_code == 1
        assert "Job not found" in result.output


class TestAdjust:
    def test_rejects_malformed_target(self, runner, audio):
        job_id = submit(runner, audio)

        result = runner.invoke(cli.main, ["adjust", job_id, "-t", "Speaker_A", "--user", "user-1"])

        assert result.exit_code == 2

    def test_rejects_job_without_analysis(self, runner, audio):
        job_id = submit(runner, audio)

        result = runner.invoke(cli.main, ["adjust", job_id, "-t", "Speaker_A=120", "--user", "user-1"])

        assert result.exit_code == 1
        assert "not ready for adjustment" in result.output

    def test_queues_analyzed_job(self, runner, fake_redis):
        RedisJobRepository(fake_redis).update(
            "job-1",
            JobStatus.READY_FOR_INPUT,
            JobUpdate(
                file_path="/uploads/job-1.mp3",
                original_filename="talk.mp3",
                speakers=[SpeakerStat(id="Speaker_A", avg_wpm=100)],
                segments=[Segment(speaker="A", start=0, end=1000)],
            ),
        )

        result = runner.invoke(cli.main, ["adjust", "job-1", "-t", "Speaker_A=120", "--user", "user-1"])

        assert result.exit_code == 0, result.output
        assert fake_redis.hget("job:job-1:status", "status") == "QUEUED_FOR_ADJUSTMENT"


class TestQuotaAndQueue:
    def test_quota_report(self, runner, audio):
        submit(runner, audio)

        result = runner.invoke(cli.main, ["quota", "--user", "user-1"])

        assert result.exit_code == 0, result.output
        assert "analysis     1/3 used, 2 remaining" in result.output
        assert "adjustment   0/1 used, 1 remaining" in result.output

    def test_queue_stats_counts_pending_analysis(self, runner, audio):
        submit(runner, audio)

        result = runner.invoke(cli.main, ["queue-stats"])

        assert result.exit_code == 0, result.output
        assert "analyze" in result.output
        assert "pending=1" in result.output
