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

"""Unit tests for per-speaker WPM measurement."""

import pytest

from podpace.core.wpm import build_segments, compute_speaker_stats, count_words, round_half_up
from podpace.models.transcription import Utterance


def words(n: int) -> str:
    return " ".join(["word"] * n)


class TestRoundHalfUp:
    @pytest.mark.parametrize("value, expected", [(0.4, 0), (0.5, 1), (1.5, 2), (2.5, 3), (149.49, 149)])
    def test_rounds_halves_up(self, value, expected):
        assert round_half_up(value) == expected


class TestCountWords:
    def test_splits_on_any_whitespace(self):
        assert count_words("  hello\tthere\nfriend  ") == 3

    def test_empty_text_has_no_words(self):
        assert count_words("") == 0


class TestComputeSpeakerStats:
    def test_single_speaker_rate(self):
        stats = compute_speaker_stats([Utterance(speaker="A", start=0, end=60000, text=words(150))])

        assert len(stats) == 1
        assert stats[0].id == "Speaker_A"
        assert stats[0].avg_wpm == 150
        assert stats[0].total_words == 150
        assert stats[0].total_duration_s == 60.0

    def test_aggregates_utterances_per_speaker(self):
        stats = compute_speaker_stats(
            [
                Utterance(speaker="A", start=0, end=30000, text=words(40)),
                Utterance(speaker="B", start=30000, end=60000, text=words(70)),
                Utterance(speaker="A", start=60000, end=90000, text=words(60)),
            ]
        )

        by_id = {s.id: s for s in stats}
        assert by_id["Speaker_A"].avg_wpm == 100
        assert by_id["Speaker_A"].total_words == 100
        assert by_id["Speaker_A"].total_duration_s == 60.0
        assert by_id["Speaker_B"].avg_wpm == 140

    def test_speakers_in_order_of_first_appearance(self):
        stats = compute_speaker_stats(
            [
                Utterance(speaker="B", start=0, end=1000, text="hi"),
                Utterance(speaker="A", start=1000, end=2000, text="hello"),
            ]
        )
        assert [s.id for s in stats] == ["Speaker_B", "Speaker_A"]

    def test_unlabelled_utterances_are_ignored(self):
        stats = compute_speaker_stats(
            [
                Utterance(speaker=None, start=0, end=60000, text=words(500)),
                Utterance(speaker="A", start=60000, end=120000, text=words(120)),
            ]
        )
        assert [(s.id, s.avg_wpm) for s in stats] == [("Speaker_A", 120)]

    def test_zero_words_yields_all_zero_stat(self):
        stats = compute_speaker_stats([Utterance(speaker="A", start=0, end=5000, text="")])

        assert stats[0].avg_wpm == 0
        assert stats[0].total_words == 0
        assert stats[0].total_duration_s == 0.0

    def test_zero_duration_yields_all_zero_stat(self):
        stats = compute_speaker_stats([Utterance(speaker="A", start=1000, end=1000, text="some words here")])

        assert stats[0].avg_wpm == 0
        assert stats[0].total_words == 0

    def test_tiny_positive_rate_rounds_to_at_least_one(self):
        # 1 word over 10 minutes is 0.1 WPM
        stats = compute_speaker_stats([Utterance(speaker="A", start=0, end=600000, text="hello")])
        assert stats[0].avg_wpm == 1

    def test_duration_rounded_to_two_decimals(self):
        stats = compute_speaker_stats([Utterance(speaker="A", start=0, end=12341, text=words(10))])
        assert stats[0].total_duration_s == 12.34

    def test_avg_positive_iff_words_and_duration_positive(self):
        utterances = [
            Utterance(speaker="A", start=0, end=3000, text=words(5)),
            Utterance(speaker="B", start=3000, end=6000, text=""),
            Utterance(speaker="C", start=6000, end=6000, text=words(3)),
        ]
        for stat in compute_speaker_stats(utterances):
            positive = stat.total_words > 0 and stat.total_duration_s > 0
            assert (stat.avg_wpm > 0) == positive


class TestBuildSegments:
    def test_keeps_every_utterance_in_order(self):
        utterances = [
            Utterance(speaker="A", start=0, end=1000, text="a"),
            Utterance(speaker=None, start=1000, end=1500, text=""),
            Utterance(speaker="B", start=1500, end=3000, text="b"),
        ]

        segments = build_segments(utterances)

        assert [(s.speaker, s.start, s.end) for s in segments] == [
            ("A", 0, 1000),
            (None, 1000, 1500),
            ("B", 1500, 3000),
        ]
