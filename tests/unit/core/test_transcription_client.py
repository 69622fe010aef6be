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

"""Unit tests for the AssemblyAI transcription client (HTTP mocked)."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from podpace.core.transcription_client import AssemblyAIClient
from podpace.models.transcription import TranscriptStatus


def json_response(payload, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    return response


@pytest.fixture
def client():
    return AssemblyAIClient("test-key", base_url="https://api.example/v2/")


@pytest.fixture
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(AssemblyAIClient.submit.retry, "sleep", lambda seconds: None)


class TestConstruction:
    def test_requires_api_key(self):
        with pytest.raises(ValueError, match="ASSEMBLYAI_API_KEY"):
            AssemblyAIClient("")


class TestUploadAndSubmit:
    def test_upload_streams_file(self, client, tmp_path):
        audio = tmp_path / "talk.mp3"
        audio.write_bytes(b"audio")

        with patch("podpace.core.transcription_client.requests.post") as post:
            post.return_value = json_response({"upload_url": "https://cdn.example/abc"})
            url = client.upload(str(audio))

        assert url == "https://cdn.example/abc"
        args, kwargs = post.call_args
        assert args[0] == "https://api.example/v2/upload"
        assert kwargs["headers"] == {"authorization": "test-key"}

    def test_submit_requests_speaker_labels(self, client):
        with patch("podpace.core.transcription_client.requests.post") as post:
            post.return_value = json_response({"id": "tr-1", "status": "queued"})
            transcript_id = client.submit("https://cdn.example/abc")

        assert transcript_id == "tr-1"
        _, kwargs = post.call_args
        assert kwargs["json"] == {"audio_url": "https://cdn.example/abc", "speaker_labels": True}

    def test_submit_retries_transient_errors(self, client, no_retry_wait):
        with patch("podpace.core.transcription_client.requests.post") as post:
            post.side_effect = [
                requests.exceptions.ConnectionError("reset"),
                json_response({"id": "tr-2"}),
            ]
            assert client.submit("https://cdn.example/abc") == "tr-2"

        assert post.call_count == 2


class TestPoll:
    def test_parses_completed_transcript(self, client):
        payload = {
            "id": "tr-1",
            "status": "completed",
            "utterances": [
                {"speaker": "A", "start": 0, "end": 1200, "text": "hello there"},
                {"speaker": None, "start": 1200, "end": 1500, "text": ""},
            ],
        }
        with patch("podpace.core.transcription_client.requests.get") as get:
            get.return_value = json_response(payload)
            result = client.poll("tr-1")

        assert get.call_args.args[0] == "https://api.example/v2/transcript/tr-1"
        assert result.status == TranscriptStatus.COMPLETED
        assert [(u.speaker, u.start, u.end) for u in result.utterances] == [("A", 0, 1200), (None, 1200, 1500)]

    def test_pending_transcript_has_no_utterances(self, client):
        with patch("podpace.core.transcription_client.requests.get") as get:
            get.return_value = json_response({"id": "tr-1", "status": "processing", "utterances": None})
            result = client.poll("tr-1")

        assert result.status == TranscriptStatus.PROCESSING
        assert result.utterances == []

    def test_error_transcript_carries_message(self, client):
        with patch("podpace.core.transcription_client.requests.get") as get:
            get.return_value = json_response({"id": "tr-1", "status": "error", "error": "unsupported codec"})
            result = client.poll("tr-1")

        assert result.status == TranscriptStatus.ERROR
        assert result.error == "unsupported codec"

    def test_unrecognised_status_maps_to_unknown(self, client):
        with patch("podpace.core.transcription_client.requests.get") as get:
            get.return_value = json_response({"id": "tr-1", "status": "throttled"})
            assert client.poll("tr-1").status == TranscriptStatus.UNKNOWN

    def test_http_error_propagates(self, client):
        response = json_response({}, status_code=503)
        response.raise_for_status.side_effect = requests.exceptions.HTTPError("503 Service Unavailable")

        with patch("podpace.core.transcription_client.requests.get") as get:
            get.return_value = response
            with pytest.raises(requests.exceptions.RequestException):
                client.poll("tr-1")
