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
Job models shared by the gate, the workers and the job ledger.

A job carries a closed set of optional typed fields. Both pipeline stages
write into the same job: analysis fills speakers/segments, adjustment
consumes them together with caller-supplied targets.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    """
    Job lifecycle status, both stages merged.

    Analysis: PENDING -> PROCESSING_UPLOAD_CLOUD -> PROCESSING_CLOUD_ANALYSIS
              -> PROCESSING_WPM_CALCULATION -> READY_FOR_INPUT
    Adjustment: READY_FOR_INPUT -> QUEUED_FOR_ADJUSTMENT -> PROCESSING_ADJUSTMENT
                -> PROCESSING_RECONSTRUCTION -> COMPLETE

    FAILED is reachable from every active state. The only way out of FAILED
    is a new adjustment attempt (FAILED -> QUEUED_FOR_ADJUSTMENT), and only
    when the failure happened in the adjustment stage.
    """

    PENDING = "PENDING"
    PROCESSING_UPLOAD_CLOUD = "PROCESSING_UPLOAD_CLOUD"
    PROCESSING_CLOUD_ANALYSIS = "PROCESSING_CLOUD_ANALYSIS"
    PROCESSING_WPM_CALCULATION = "PROCESSING_WPM_CALCULATION"
    READY_FOR_INPUT = "READY_FOR_INPUT"
    QUEUED_FOR_ADJUSTMENT = "QUEUED_FOR_ADJUSTMENT"
    PROCESSING_ADJUSTMENT = "PROCESSING_ADJUSTMENT"
    PROCESSING_RECONSTRUCTION = "PROCESSING_RECONSTRUCTION"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"

    @property
    def is_active(self) -> bool:
        """True while a worker may still move this job forward."""
        return self not in (JobStatus.READY_FOR_INPUT, JobStatus.COMPLETE, JobStatus.FAILED)

    def can_transition_to(self, target: "JobStatus", failed_stage: Optional["JobStage"] = None) -> bool:
        """
        Check whether moving from this status to target is a legal lifecycle step.

        Args:
            target: Status to move to
            failed_stage: Stage that produced the failure, consulted only
                when leaving FAILED

        Returns:
            True if the transition is allowed
        """
        if self == JobStatus.FAILED:
            return target == JobStatus.QUEUED_FOR_ADJUSTMENT and failed_stage == JobStage.ADJUSTMENT
        if target == JobStatus.FAILED:
            return self.is_active or self == JobStatus.READY_FOR_INPUT
        return target in _FORWARD_TRANSITIONS.get(self, frozenset())


class JobStage(str, Enum):
    """Pipeline stage; also the unit a quota kind is metered against."""

    ANALYSIS = "analysis"
    ADJUSTMENT = "adjustment"


_FORWARD_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING_UPLOAD_CLOUD}),
    JobStatus.PROCESSING_UPLOAD_CLOUD: frozenset({JobStatus.PROCESSING_CLOUD_ANALYSIS}),
    JobStatus.PROCESSING_CLOUD_ANALYSIS: frozenset({JobStatus.PROCESSING_WPM_CALCULATION}),
    JobStatus.PROCESSING_WPM_CALCULATION: frozenset({JobStatus.READY_FOR_INPUT}),
    JobStatus.READY_FOR_INPUT: frozenset({JobStatus.QUEUED_FOR_ADJUSTMENT}),
    JobStatus.QUEUED_FOR_ADJUSTMENT: frozenset({JobStatus.PROCESSING_ADJUSTMENT}),
    # The no-op optimization completes straight from PROCESSING_ADJUSTMENT
    JobStatus.PROCESSING_ADJUSTMENT: frozenset({JobStatus.PROCESSING_RECONSTRUCTION, JobStatus.COMPLETE}),
    JobStatus.PROCESSING_RECONSTRUCTION: frozenset({JobStatus.COMPLETE}),
}


class UserRole(str, Enum):
    """Caller role as resolved by the (external) auth layer."""

    VISITOR = "VISITOR"
    FREE = "FREE"
    PAID = "PAID"

    @property
    def is_unlimited(self) -> bool:
        return self == UserRole.PAID


class QuotaKind(str, Enum):
    """Independently metered actions."""

    ANALYSIS = "analysis"
    ADJUSTMENT = "adjustment"

    @classmethod
    def for_stage(cls, stage: JobStage) -> "QuotaKind":
        return cls(stage.value)


class SpeakerStat(BaseModel):
    """Measured speaking rate for one diarized speaker."""

    id: str  # e.g. "Speaker_A"
    avg_wpm: int
    total_words: int = 0
    total_duration_s: float = 0.0

    model_config = {"frozen": True}


class Segment(BaseModel):
    """
    A contiguous span of source audio, as reported by diarization.

    Times are milliseconds. Segments keep the raw diarization label
    (e.g. "A"); speaker_id gives the "Speaker_A" form used by stats and
    targets. A None speaker marks silence/unknown audio.
    """

    speaker: Optional[str] = None
    start: int
    end: int

    @property
    def speaker_id(self) -> Optional[str]:
        return speaker_id_for(self.speaker)

    @property
    def duration_ms(self) -> int:
        return self.end - self.start


class TargetSpec(BaseModel):
    """Caller-requested rate for one speaker."""

    id: str
    target_wpm: int = Field(ge=50, le=400)


def speaker_id_for(label: Optional[str]) -> Optional[str]:
    """Map a diarization label ("A") to a speaker id ("Speaker_A")."""
    if label is None:
        return None
    return f"Speaker_{label}"


class JobUpdate(BaseModel):
    """
    Fields to merge into a job's data record alongside a status change.

    Only fields explicitly passed are written. Passing None for a field
    removes it from the record, e.g. JobUpdate(error=None) clears a previous
    failure message.
    """

    user_id: Optional[str] = None
    original_filename: Optional[str] = None
    file_path: Optional[str] = None
    transcript_id: Optional[str] = None
    speakers: Optional[List[SpeakerStat]] = None
    segments: Optional[List[Segment]] = None
    targets: Optional[List[TargetSpec]] = None
    output_file_path: Optional[str] = None
    error: Optional[str] = None
    failed_stage: Optional[JobStage] = None
    created_at: Optional[datetime] = None


class Job(BaseModel):
    """Merged view of a job's status record and data record."""

    id: str
    status: JobStatus
    updated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    user_id: Optional[str] = None
    original_filename: Optional[str] = None
    file_path: Optional[str] = None
    transcript_id: Optional[str] = None
    speakers: Optional[List[SpeakerStat]] = None
    segments: Optional[List[Segment]] = None
    targets: Optional[List[TargetSpec]] = None
    output_file_path: Optional[str] = None
    error: Optional[str] = None
    failed_stage: Optional[JobStage] = None

    @property
    def has_analysis(self) -> bool:
        return self.speakers is not None and self.segments is not None

    @property
    def awaiting_targets(self) -> bool:
        """
        True when an adjustment request is accepted for this job.

        That is READY_FOR_INPUT, or FAILED during adjustment (a retry). A job
        already queued or running for adjustment is not accepted again.
        """
        return self.has_analysis and self.status.can_transition_to(JobStatus.QUEUED_FOR_ADJUSTMENT, self.failed_stage)

    def to_dict(self) -> Dict[str, Any]:
        """Convert job to a JSON-ready dict for status polling."""
        data = self.model_dump(mode="json", exclude_none=True)
        data["job_id"] = data.pop("id")
        return data
