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
Adjustment stage: per-segment time-stretch and reconstruction.

Status sequence written to the job ledger:
    PROCESSING_ADJUSTMENT -> [PROCESSING_RECONSTRUCTION] -> COMPLETE

When no target would change any segment, the source file is copied to the
output path unchanged and the job completes without touching a media tool.
Otherwise each planned segment is extracted (and stretched if its factor
differs from 1), in source order, and the pieces are concatenated once.
Intermediate files live in a per-job temp directory that is removed
whether the job succeeds or fails.
"""

import shutil
import time
from pathlib import Path
from typing import List, Optional

import structlog

from ..models.job import JobStage, JobStatus, JobUpdate, TargetSpec
from ..repositories.job_repository import JobRepository
from ..utils.exceptions import AnalysisDataMissingError, MediaToolError
from .adjustment_plan import (
    DEFAULT_STRETCH_TOLERANCE,
    DEFAULT_WPM_TOLERANCE,
    SegmentPlan,
    needs_reconstruction,
    plan_segments,
)
from .audio_tools import MediaTool, TimeStretcher

logger = structlog.get_logger(__name__)


def normalized_name(original_filename: str, suffix: Optional[str] = None) -> str:
    """Map "episode.wav" to "episode_normalized.wav", optionally with a different suffix."""
    path = Path(original_filename)
    return f"{path.stem}_normalized{suffix if suffix is not None else path.suffix}"


class AdjustmentWorker:
    """Runs the adjustment stage for one job at a time."""

    def __init__(
        self,
        job_repository: JobRepository,
        media_tool: MediaTool,
        stretcher: TimeStretcher,
        output_dir: Path,
        temp_dir: Path,
        wpm_tolerance: float = DEFAULT_WPM_TOLERANCE,
        stretch_tolerance: float = DEFAULT_STRETCH_TOLERANCE,
        min_stretch_factor: Optional[float] = None,
        max_stretch_factor: Optional[float] = None,
    ):
        self.job_repository = job_repository
        self.media_tool = media_tool
        self.stretcher = stretcher
        self.output_dir = Path(output_dir)
        self.temp_dir = Path(temp_dir)
        self.wpm_tolerance = wpm_tolerance
        self.stretch_tolerance = stretch_tolerance
        self.min_stretch_factor = min_stretch_factor
        self.max_stretch_factor = max_stretch_factor

    def process(
        self,
        job_id: str,
        source_file_path: str,
        original_filename: str,
        targets: Optional[List[TargetSpec]],
    ) -> bool:
        """
        Adjust one analyzed job.

        Returns:
            True if the job reached COMPLETE, False if it FAILED
        """
        log = logger.bind(job_id=job_id)
        log.info("adjustment_started", target_count=len(targets or []))
        started = time.monotonic()
        job_temp_dir = self.temp_dir / job_id

        try:
            self.job_repository.update(job_id, JobStatus.PROCESSING_ADJUSTMENT)

            job = self.job_repository.read(job_id)
            if job is None or not job.has_analysis:
                raise AnalysisDataMissingError("Analysis data not found for job", job_id=job_id)

            job_output_dir = self.output_dir / job_id
            job_output_dir.mkdir(parents=True, exist_ok=True)

            if not needs_reconstruction(job.speakers, targets, tolerance=self.wpm_tolerance):
                output_path = job_output_dir / normalized_name(original_filename, Path(source_file_path).suffix)
                shutil.copyfile(source_file_path, output_path)
                log.info("adjustment_skipped", reason="targets_match_measured_rates")
            else:
                plans = plan_segments(
                    job.segments,
                    job.speakers,
                    targets,
                    min_factor=self.min_stretch_factor,
                    max_factor=self.max_stretch_factor,
                )
                job_temp_dir.mkdir(parents=True, exist_ok=True)
                segment_paths = self._render_segments(source_file_path, plans, job_temp_dir)

                self.job_repository.update(job_id, JobStatus.PROCESSING_RECONSTRUCTION)
                if not segment_paths:
                    raise MediaToolError("No audio segments were produced", job_id=job_id)

                output_path = job_output_dir / normalized_name(original_filename, ".mp3")
                self.media_tool.concatenate(segment_paths, str(output_path))

            self.job_repository.update(
                job_id,
                JobStatus.COMPLETE,
                JobUpdate(output_file_path=str(output_path)),
            )
            log.info(
                "adjustment_completed",
                output_file=output_path.name,
                duration_seconds=round(time.monotonic() - started, 2),
            )
            return True

        except Exception as e:
            log.error("adjustment_failed", error=str(e), error_type=type(e).__name__, exc_info=True)
            self.job_repository.update(
                job_id,
                JobStatus.FAILED,
                JobUpdate(error=str(e) or type(e).__name__, failed_stage=JobStage.ADJUSTMENT),
            )
            return False

        finally:
            self._cleanup(job_temp_dir)

    def _render_segments(self, source_file_path: str, plans: List[SegmentPlan], work_dir: Path) -> List[str]:
        """Extract and (where needed) stretch each planned segment, in order."""
        paths = []
        stretched = 0

        for plan in plans:
            if plan.duration_s <= 0:
                continue

            extract_path = work_dir / f"segment_{plan.index:05d}.wav"
            self.media_tool.extract(source_file_path, plan.start_s, plan.duration_s, str(extract_path))

            if plan.needs_stretch(self.stretch_tolerance):
                stretched_path = work_dir / f"segment_{plan.index:05d}_stretched.wav"
                self.stretcher.transform(str(extract_path), str(stretched_path), plan.factor)
                paths.append(str(stretched_path))
                stretched += 1
            else:
                paths.append(str(extract_path))

        logger.info("segments_rendered", segment_count=len(paths), stretched_count=stretched)
        return paths

    def _cleanup(self, job_temp_dir: Path) -> None:
        if not job_temp_dir.exists():
            return
        try:
            shutil.rmtree(job_temp_dir)
        except OSError as e:
            logger.warning("temp_cleanup_failed", path=str(job_temp_dir), error=str(e))
