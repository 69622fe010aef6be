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
Client for the diarized transcription service.

The analysis worker only depends on the TranscriptionService interface:
upload a local file, submit it for speaker-labelled transcription, then poll
the returned id. AssemblyAIClient implements it over the AssemblyAI v2 REST
API.

Upload and submit are retried with exponential backoff. poll() is a single
request; the caller owns the polling loop and its budget.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict

import requests
from tenacity import retry, stop_after_attempt, wait_exponential

from ..models.transcription import TranscriptResult, TranscriptStatus, Utterance

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.assemblyai.com/v2"

# Timeout configuration
UPLOAD_TIMEOUT = 600  # 10 minutes for large episodes
REQUEST_TIMEOUT = 30


class TranscriptionService(ABC):
    """Speaker-diarized transcription collaborator."""

    @abstractmethod
    def upload(self, audio_path: str) -> str:
        """Upload a local audio file; returns a URL the service can read."""
        pass

    @abstractmethod
    def submit(self, audio_url: str) -> str:
        """Request diarized transcription; returns the transcript id."""
        pass

    @abstractmethod
    def poll(self, transcript_id: str) -> TranscriptResult:
        """
        Fetch the current state of a transcript.

        Raises:
            requests.exceptions.RequestException: On transport or HTTP errors
        """
        pass


class AssemblyAIClient(TranscriptionService):
    """AssemblyAI transcription with speaker labels."""

    def __init__(self, api_key: str, base_url: str = DEFAULT_BASE_URL):
        if not api_key:
            raise ValueError("AssemblyAI API key is required. Set ASSEMBLYAI_API_KEY environment variable.")

        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    @property
    def headers(self) -> Dict[str, str]:
        return {"authorization": self.api_key}

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=60),
        reraise=True,
    )
    def upload(self, audio_path: str) -> str:
        path = Path(audio_path)
        logger.info(f"Uploading {path.name} to transcription service ({path.stat().st_size} bytes)")

        with open(path, "rb") as audio_file:
            try:
                response = requests.post(
                    f"{self.base_url}/upload",
                    headers=self.headers,
                    data=audio_file,
                    timeout=UPLOAD_TIMEOUT,
                )
                response.raise_for_status()
            except requests.exceptions.HTTPError as e:
                self._log_http_error(e)
                raise

        upload_url = response.json()["upload_url"]
        logger.info("Upload complete")
        return upload_url

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=60),
        reraise=True,
    )
    def submit(self, audio_url: str) -> str:
        try:
            response = requests.post(
                f"{self.base_url}/transcript",
                headers=self.headers,
                json={"audio_url": audio_url, "speaker_labels": True},
                timeout=REQUEST_TIMEOUT,
            )
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            self._log_http_error(e)
            raise

        transcript_id = response.json()["id"]
        logger.info(f"Transcription submitted: {transcript_id}")
        return transcript_id

    def poll(self, transcript_id: str) -> TranscriptResult:
        response = requests.get(
            f"{self.base_url}/transcript/{transcript_id}",
            headers=self.headers,
            timeout=REQUEST_TIMEOUT,
        )
        response.raise_for_status()
        return self._parse_result(response.json())

    def _parse_result(self, data: Dict[str, Any]) -> TranscriptResult:
        utterances = [
            Utterance(
                speaker=raw.get("speaker"),
                start=int(raw.get("start") or 0),
                end=int(raw.get("end") or 0),
                text=raw.get("text") or "",
            )
            for raw in data.get("utterances") or []
        ]
        return TranscriptResult(
            id=data["id"],
            status=TranscriptStatus(data.get("status")),
            utterances=utterances,
            error=data.get("error"),
        )

    def _log_http_error(self, e: requests.exceptions.HTTPError) -> None:
        """Log HTTP error with details."""
        status_code = e.response.status_code if e.response is not None else "unknown"
        logger.error(f"HTTP error {status_code}: {e}")
        if e.response is not None:
            logger.error(f"Response body: {e.response.text[:1000]}")
