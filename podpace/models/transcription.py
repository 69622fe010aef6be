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

"""Diarized transcription results as returned by the transcription service."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class TranscriptStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_(cls, value):
        return cls.UNKNOWN


class Utterance(BaseModel):
    """One diarized utterance. Times are milliseconds."""

    speaker: Optional[str] = None
    start: int
    end: int
    text: str = ""


class TranscriptResult(BaseModel):
    """A single poll response."""

    id: str
    status: TranscriptStatus
    utterances: List[Utterance] = Field(default_factory=list)
    error: Optional[str] = None
