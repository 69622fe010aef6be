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
Service layer for podpace

This package contains the admission gate and the caller-facing job
operations used by the CLI and by any HTTP layer placed in front of them.
"""

from .job_service import DownloadInfo, JobService
from .pipeline_gate import PipelineGate

__all__ = [
    "DownloadInfo",
    "JobService",
    "PipelineGate",
]
