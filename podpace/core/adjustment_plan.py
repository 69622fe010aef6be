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
Pure planning functions for the adjustment stage.

Given the speakers and segments persisted by analysis and the caller's
targets, decide whether reconstruction is needed at all and, if it is,
which time-stretch factor applies to every segment. No I/O happens here;
the adjustment worker executes the plan.

Factor convention: factor = target_wpm / avg_wpm, passed to the stretch
tool as a tempo multiplier. A factor above 1 speeds the segment up.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from ..models.job import Segment, SpeakerStat, TargetSpec

DEFAULT_WPM_TOLERANCE = 1.0
DEFAULT_STRETCH_TOLERANCE = 0.01


@dataclass(frozen=True)
class SegmentPlan:
    """What to do with one source segment."""

    index: int
    speaker_id: Optional[str]
    start_s: float
    duration_s: float
    factor: float = 1.0

    def needs_stretch(self, tolerance: float = DEFAULT_STRETCH_TOLERANCE) -> bool:
        return abs(self.factor - 1.0) > tolerance


def _averages(speakers: Iterable[SpeakerStat]) -> Dict[str, int]:
    return {speaker.id: speaker.avg_wpm for speaker in speakers}


def _target_map(targets: Iterable[TargetSpec]) -> Dict[str, int]:
    return {target.id: target.target_wpm for target in targets}


def needs_reconstruction(
    speakers: List[SpeakerStat],
    targets: Optional[List[TargetSpec]],
    tolerance: float = DEFAULT_WPM_TOLERANCE,
) -> bool:
    """
    True if at least one target would change some segment.

    Targets naming a speaker that analysis did not find, or a speaker whose
    measured rate is zero, cannot change anything and are ignored.
    """
    if not targets:
        return False

    averages = _averages(speakers)
    for target in targets:
        average = averages.get(target.id)
        if not average or average <= 0:
            continue
        if abs(target.target_wpm - average) > tolerance:
            return True

    return False


def stretch_factor(
    target_wpm: Optional[int],
    avg_wpm: Optional[int],
    min_factor: Optional[float] = None,
    max_factor: Optional[float] = None,
) -> float:
    """
    Tempo multiplier that moves avg_wpm to target_wpm.

    Returns 1.0 when there is no target or no positive measured rate.
    Optional bounds clamp the result.
    """
    if target_wpm is None or not avg_wpm or avg_wpm <= 0:
        return 1.0

    factor = target_wpm / avg_wpm
    if min_factor is not None:
        factor = max(min_factor, factor)
    if max_factor is not None:
        factor = min(max_factor, factor)
    return factor


def plan_segments(
    segments: List[Segment],
    speakers: List[SpeakerStat],
    targets: Optional[List[TargetSpec]],
    min_factor: Optional[float] = None,
    max_factor: Optional[float] = None,
) -> List[SegmentPlan]:
    """
    Build the per-segment plan in chronological (source) order.

    Segments with zero or negative duration are dropped. Unlabelled
    segments and speakers without a target keep factor 1.0.
    """
    averages = _averages(speakers)
    target_by_speaker = _target_map(targets or [])

    plans = []
    for index, segment in enumerate(segments):
        if segment.duration_ms <= 0:
            continue

        speaker_id = segment.speaker_id
        factor = 1.0
        if speaker_id is not None:
            factor = stretch_factor(
                target_by_speaker.get(speaker_id),
                averages.get(speaker_id),
                min_factor=min_factor,
                max_factor=max_factor,
            )

        plans.append(
            SegmentPlan(
                index=index,
                speaker_id=speaker_id,
                start_s=segment.start / 1000,
                duration_s=segment.duration_ms / 1000,
                factor=factor,
            )
        )

    return plans
