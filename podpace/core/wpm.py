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
Per-speaker speaking-rate measurement from diarized utterances.

Pure functions; the analysis worker persists their results.
"""

import math
from collections import OrderedDict
from typing import Dict, Iterable, List

from ..models.job import Segment, SpeakerStat, speaker_id_for
from ..models.transcription import Utterance


def round_half_up(value: float) -> int:
    """Round halves up for non-negative values; built-in round() rounds halves to even."""
    return int(math.floor(value + 0.5))


def count_words(text: str) -> int:
    return len(text.split())


def compute_speaker_stats(utterances: Iterable[Utterance]) -> List[SpeakerStat]:
    """
    Aggregate words and speaking time per labelled speaker.

    Utterances without a speaker label are ignored. Speakers are returned in
    order of first appearance.

    avg_wpm is words per minute of that speaker's own speaking time, rounded
    half up. A positive measurement never rounds to 0; when either words or
    duration is zero the whole stat is zero.
    """
    totals: Dict[str, List[int]] = OrderedDict()

    for utterance in utterances:
        if utterance.speaker is None:
            continue
        words_and_ms = totals.setdefault(utterance.speaker, [0, 0])
        words_and_ms[0] += count_words(utterance.text)
        words_and_ms[1] += utterance.end - utterance.start

    stats = []
    for label, (words, duration_ms) in totals.items():
        speaker_id = speaker_id_for(label)
        if words <= 0 or duration_ms <= 0:
            stats.append(SpeakerStat(id=speaker_id, avg_wpm=0, total_words=0, total_duration_s=0.0))
            continue

        duration_s = duration_ms / 1000
        avg_wpm = max(1, round_half_up(words / duration_s * 60))
        stats.append(
            SpeakerStat(
                id=speaker_id,
                avg_wpm=avg_wpm,
                total_words=words,
                total_duration_s=round(duration_s, 2),
            )
        )

    return stats


def build_segments(utterances: Iterable[Utterance]) -> List[Segment]:
    """One segment per utterance, in order, unlabelled ones included."""
    return [Segment(speaker=u.speaker, start=u.start, end=u.end) for u in utterances]
