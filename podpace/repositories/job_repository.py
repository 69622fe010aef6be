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
Abstract repository for the job ledger.

Defines the contract that job ledger backends must implement. Callers never
see how a job is laid out in storage; they read a merged Job and write a
status change plus optional fields as one logical update.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional

from ..models.job import Job, JobStatus, JobUpdate


class JobRepository(ABC):
    """
    Abstract repository for job status persistence.

    Implementations must make update() atomic: readers never observe the new
    status without the fields written alongside it, or vice versa.
    """

    @abstractmethod
    def read(self, job_id: str) -> Optional[Job]:
        """
        Get the merged job record.

        Args:
            job_id: Job identifier

        Returns:
            Job if found, None otherwise

        Raises:
            JobStoreError: If the backing store cannot be read
        """
        pass

    @abstractmethod
    def update(self, job_id: str, status: JobStatus, fields: Optional[JobUpdate] = None) -> bool:
        """
        Set status (and updated_at) and merge fields in one atomic write.

        Status reporting is best-effort: on storage failure implementations
        log and return False instead of raising, so a worker never crashes on
        a ledger write.

        Args:
            job_id: Job identifier
            status: New status
            fields: Optional fields to merge into the job's data record

        Returns:
            True if the write was applied, False otherwise
        """
        pass

    @abstractmethod
    def transition(
        self,
        job_id: str,
        allowed: Callable[[Job], bool],
        status: JobStatus,
        fields: Optional[JobUpdate] = None,
    ) -> bool:
        """
        Apply an update only if the current job passes a check.

        The check and the write are atomic with respect to every other
        writer: two callers racing on the same job cannot both succeed.

        Args:
            job_id: Job identifier
            allowed: Predicate evaluated on the current job
            status: New status
            fields: Optional fields to merge into the job's data record

        Returns:
            True if the job existed, passed the check and was updated

        Raises:
            JobStoreError: If the backing store cannot be read or written
        """
        pass
