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
External audio tools behind narrow interfaces.

MediaTool covers decode/cut/encode work and is implemented with pydub
(ffmpeg underneath). TimeStretcher changes tempo without changing pitch and
is implemented by running the rubberband command-line tool. Workers only
see the interfaces, so tests substitute fakes and no real media tools are
needed to exercise the pipeline.
"""

import io
import logging
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Sequence

from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError, CouldntEncodeError

from ..utils.exceptions import MediaToolError

logger = logging.getLogger(__name__)


class MediaTool(ABC):
    """Decode, cut and encode audio."""

    @abstractmethod
    def extract(self, source_path: str, start_s: float, duration_s: float, output_path: str) -> str:
        """
        Cut [start_s, start_s + duration_s) from source into a mono WAV.

        Returns:
            Path of the written WAV

        Raises:
            MediaToolError: If decoding or writing fails
        """
        pass

    @abstractmethod
    def concatenate(self, segment_paths: Sequence[str], output_path: str) -> str:
        """
        Join segment files in the given order and encode once.

        Raises:
            MediaToolError: If the list is empty or encoding fails
        """
        pass

    @abstractmethod
    def excerpt(self, source_path: str, start_s: float, duration_s: float) -> bytes:
        """Encode a short excerpt of the source in memory (MP3)."""
        pass


class TimeStretcher(ABC):
    """Tempo change with pitch preserved."""

    @abstractmethod
    def transform(self, input_path: str, output_path: str, factor: float) -> str:
        """
        Write input at factor times its original tempo to output.

        Raises:
            MediaToolError: If the tool fails
        """
        pass


class PydubMediaTool(MediaTool):
    """MediaTool backed by pydub/ffmpeg."""

    # Intermediate segment format
    TARGET_SAMPLE_RATE = 44100
    TARGET_CHANNELS = 1
    TARGET_SAMPLE_WIDTH = 2  # 16-bit

    def __init__(self, bitrate: str = "192k"):
        self.bitrate = bitrate

    def _load(self, source_path: str, start_s: float, duration_s: float) -> AudioSegment:
        try:
            return AudioSegment.from_file(source_path, start_second=start_s, duration=duration_s)
        except (CouldntDecodeError, OSError) as e:
            raise MediaToolError("Failed to decode audio", path=source_path, start_s=start_s) from e

    def extract(self, source_path: str, start_s: float, duration_s: float, output_path: str) -> str:
        audio = self._load(source_path, start_s, duration_s)
        audio = (
            audio.set_channels(self.TARGET_CHANNELS)
            .set_frame_rate(self.TARGET_SAMPLE_RATE)
            .set_sample_width(self.TARGET_SAMPLE_WIDTH)
        )

        try:
            audio.export(
                output_path,
                format="wav",
                parameters=[
                    "-ar", str(self.TARGET_SAMPLE_RATE),
                    "-ac", str(self.TARGET_CHANNELS),
                    "-sample_fmt", "s16",
                ],
            )
        except (CouldntEncodeError, OSError) as e:
            raise MediaToolError("Failed to write segment", path=output_path) from e

        logger.debug(f"Extracted {duration_s:.3f}s at {start_s:.3f}s to {Path(output_path).name}")
        return output_path

    def concatenate(self, segment_paths: Sequence[str], output_path: str) -> str:
        if not segment_paths:
            raise MediaToolError("No segments to concatenate", path=output_path)

        combined = AudioSegment.empty()
        for path in segment_paths:
            try:
                combined += AudioSegment.from_file(path)
            except (CouldntDecodeError, OSError) as e:
                raise MediaToolError("Failed to read segment", path=path) from e

        try:
            combined.export(output_path, format="mp3", codec="libmp3lame", bitrate=self.bitrate)
        except (CouldntEncodeError, OSError) as e:
            raise MediaToolError("Failed to encode output", path=output_path) from e

        logger.info(f"Concatenated {len(segment_paths)} segments into {Path(output_path).name}")
        return output_path

    def excerpt(self, source_path: str, start_s: float, duration_s: float) -> bytes:
        audio = self._load(source_path, start_s, duration_s)
        buffer = io.BytesIO()
        try:
            audio.export(buffer, format="mp3", bitrate=self.bitrate)
        except (CouldntEncodeError, OSError) as e:
            raise MediaToolError("Failed to encode excerpt", path=source_path) from e
        return buffer.getvalue()


class RubberbandStretcher(TimeStretcher):
    """TimeStretcher that runs the rubberband CLI (--tempo keeps pitch)."""

    def __init__(self, binary: str = "rubberband", timeout: int = 600):
        self.binary = binary
        self.timeout = timeout

    def build_command(self, input_path: str, output_path: str, factor: float) -> List[str]:
        return [self.binary, "--tempo", f"{factor:.6f}", input_path, output_path]

    def transform(self, input_path: str, output_path: str, factor: float) -> str:
        command = self.build_command(input_path, output_path, factor)
        logger.debug(f"Running: {' '.join(command)}")

        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise MediaToolError("Time-stretch timed out", path=input_path, timeout=self.timeout) from e
        except FileNotFoundError as e:
            raise MediaToolError(f"{self.binary} not found - please install rubberband", path=input_path) from e

        if result.returncode != 0:
            raise MediaToolError(
                "Time-stretch failed",
                stderr=result.stderr,
                path=input_path,
                returncode=result.returncode,
            )

        return output_path
