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

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel


class Config(BaseModel):
    # Stores
    redis_url: str = "redis://127.0.0.1:6379/0"
    database_path: Path = Path("./data/queue.db")

    # Storage Paths
    storage_path: Path = Path("./data")
    upload_dir: Path = Path("./data/uploads")
    output_dir: Path = Path("./data/output")
    temp_dir: Path = Path("./data/temp_adjust")

    # Transcription Configuration
    assemblyai_api_key: str = ""
    assemblyai_base_url: str = "https://api.assemblyai.com/v2"
    transcript_poll_interval: float = 5.0
    transcript_max_poll_attempts: int = 720  # 720 * 5s = 1 hour

    # Quota Configuration (per user, per UTC day)
    analysis_daily_limit: int = 3
    adjustment_daily_limit: int = 1

    # Worker Configuration
    worker_concurrency: int = 2
    stale_task_timeout_minutes: int = 120  # claimed tasks older than this are requeued on pool start

    # Adjustment Configuration
    wpm_tolerance: float = 1.0
    stretch_tolerance: float = 0.01
    min_stretch_factor: Optional[float] = None  # None = no clamping
    max_stretch_factor: Optional[float] = None
    rubberband_binary: str = "rubberband"
    output_bitrate: str = "192k"
    preview_max_seconds: float = 10.0

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._ensure_directories()

    def _ensure_directories(self):
        """Create necessary directories if they don't exist"""
        directories = [
            self.storage_path,
            self.upload_dir,
            self.output_dir,
            self.temp_dir,
            self.database_path.parent,
        ]

        for directory in directories:
            directory.mkdir(parents=True, exist_ok=True)


def _optional_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    return float(value) if value else None


def load_config(env_file: Optional[str] = None) -> Config:
    """Load configuration from environment variables and .env file"""
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    # All paths derived from storage_path for cross-platform compatibility
    storage_path = Path(os.getenv("STORAGE_PATH", "./data"))

    config_data = {
        "redis_url": os.getenv("REDIS_URL", "redis://127.0.0.1:6379/0"),
        "database_path": Path(os.getenv("DATABASE_PATH", str(storage_path / "queue.db"))),
        "storage_path": storage_path,
        "upload_dir": storage_path / "uploads",
        "output_dir": storage_path / "output",
        "temp_dir": storage_path / "temp_adjust",
        "assemblyai_api_key": os.getenv("ASSEMBLYAI_API_KEY", ""),
        "assemblyai_base_url": os.getenv("ASSEMBLYAI_BASE_URL", "https://api.assemblyai.com/v2"),
        "transcript_poll_interval": float(os.getenv("TRANSCRIPT_POLL_INTERVAL", "5")),
        "transcript_max_poll_attempts": int(os.getenv("TRANSCRIPT_MAX_POLL_ATTEMPTS", "720")),
        "analysis_daily_limit": int(os.getenv("ANALYSIS_DAILY_LIMIT", "3")),
        "adjustment_daily_limit": int(os.getenv("ADJUSTMENT_DAILY_LIMIT", "1")),
        "worker_concurrency": int(os.getenv("WORKER_CONCURRENCY", "2")),
        "stale_task_timeout_minutes": int(os.getenv("STALE_TASK_TIMEOUT_MINUTES", "120")),
        "wpm_tolerance": float(os.getenv("WPM_TOLERANCE", "1.0")),
        "stretch_tolerance": float(os.getenv("STRETCH_TOLERANCE", "0.01")),
        "min_stretch_factor": _optional_float("MIN_STRETCH_FACTOR"),
        "max_stretch_factor": _optional_float("MAX_STRETCH_FACTOR"),
        "rubberband_binary": os.getenv("RUBBERBAND_BINARY", "rubberband"),
        "output_bitrate": os.getenv("OUTPUT_BITRATE", "192k"),
        "preview_max_seconds": float(os.getenv("PREVIEW_MAX_SECONDS", "10")),
    }

    if config_data["worker_concurrency"] < 1:
        raise ValueError("WORKER_CONCURRENCY must be at least 1")

    return Config(**config_data)
