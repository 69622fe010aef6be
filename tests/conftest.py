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
Pytest fixtures for podpace tests.

Provides an in-memory Redis (fakeredis), a temporary SQLite queue, and fake
transcription/media/stretch collaborators so no network, ffmpeg or
rubberband is needed. The media fakes write small text files describing
what was done, which lets tests assert on segment order and factors by
reading the output back.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence

import fakeredis
import pytest

from podpace.core.audio_tools import MediaTool, TimeStretcher
from podpace.core.queue_manager import QueueManager
from podpace.core.transcription_client import TranscriptionService
from podpace.models.job import QuotaKind
from podpace.models.transcription import TranscriptResult, TranscriptStatus, Utterance
from podpace.repositories.redis_job_repository import RedisJobRepository
from podpace.repositories.redis_quota_repository import RedisQuotaLedger


class MutableClock:
    """Callable clock tests can move forward."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeTranscriptionService(TranscriptionService):
    """
    Scripted transcription service.

    poll() returns (or raises) the queued responses in order, repeating the
    last one once the script runs out.
    """

    def __init__(self, responses: Optional[list] = None):
        self.responses = list(responses or [])
        self.uploaded: List[str] = []
        self.submitted: List[str] = []
        self.poll_count = 0

    def upload(self, audio_path: str) -> str:
        self.uploaded.append(audio_path)
        return f"https://upload.example/{Path(audio_path).name}"

    def submit(self, audio_url: str) -> str:
        self.submitted.append(audio_url)
        return "transcript-1"

    def poll(self, transcript_id: str) -> TranscriptResult:
        self.poll_count += 1
        index = min(self.poll_count - 1, len(self.responses) - 1)
        response = self.responses[index]
        if isinstance(response, Exception):
            raise response
        return response


class FakeMediaTool(MediaTool):
    """Writes "start:duration" descriptors instead of audio."""

    def __init__(self):
        self.extracted: List[tuple] = []
        self.concatenated: List[List[str]] = []

    def extract(self, source_path: str, start_s: float, duration_s: float, output_path: str) -> str:
        self.extracted.append((start_s, duration_s))
        Path(output_path).write_text(f"{start_s:.3f}:{duration_s:.3f}")
        return output_path

    def concatenate(self, segment_paths: Sequence[str], output_path: str) -> str:
        self.concatenated.append(list(segment_paths))
        pieces = [Path(p).read_text() for p in segment_paths]
        Path(output_path).write_text("|".join(pieces))
        return output_path

    def excerpt(self, source_path: str, start_s: float, duration_s: float) -> bytes:
        self.extracted.append((start_s, duration_s))
        return f"mp3:{start_s:.3f}:{duration_s:.3f}".encode()


class FakeStretcher(TimeStretcher):
    """Prefixes the input descriptor with the factor applied."""

    def __init__(self):
        self.calls: List[tuple] = []

    def transform(self, input_path: str, output_path: str, factor: float) -> str:
        self.calls.append((Path(input_path).name, factor))
        Path(output_path).write_text(f"x{factor:.2f}@{Path(input_path).read_text()}")
        return output_path


def completed_transcript(utterances: List[Utterance], transcript_id: str = "transcript-1") -> TranscriptResult:
    return TranscriptResult(id=transcript_id, status=TranscriptStatus.COMPLETED, utterances=utterances)


@pytest.fixture
def redis_client():
    """Fresh in-memory Redis per test."""
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def clock():
    return MutableClock(datetime(2025, 3, 14, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def job_repository(redis_client, clock):
    return RedisJobRepository(redis_client, clock=clock)


@pytest.fixture
def quota_ledger(redis_client, clock):
    return RedisQuotaLedger(
        redis_client,
        limits={QuotaKind.ANALYSIS: 3, QuotaKind.ADJUSTMENT: 1},
        clock=clock,
    )


@pytest.fixture
def queue_manager(tmp_path):
    return QueueManager(str(tmp_path / "queue.db"))


@pytest.fixture
def media_tool():
    return FakeMediaTool()


@pytest.fixture
def stretcher():
    return FakeStretcher()


@pytest.fixture
def make_transcription_service():
    """Factory for scripted transcription services."""
    return FakeTranscriptionService


@pytest.fixture
def make_completed_transcript():
    return completed_transcript
