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
Redis-backed job ledger.

Each job is stored as two hashes:
    job:{id}:status  status, updated_at
    job:{id}:data    user_id, original_filename, file_path, transcript_id,
                     speakers (JSON), segments (JSON), targets (JSON),
                     output_file_path, error, failed_stage, created_at

Both hashes are written inside one MULTI/EXEC transaction and read back in
one transactional pipeline, so a poll never sees a half-applied update.
Checked transitions WATCH both hashes and retry when another writer gets
in between the check and the write.
"""

import json
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import redis
from pydantic import ValidationError
from structlog import get_logger

from ..models.job import Job, JobStatus, JobUpdate
from ..utils.exceptions import JobStoreError
from .job_repository import JobRepository

logger = get_logger(__name__)

# Fields stored as JSON arrays in the data hash
_JSON_FIELDS = ("speakers", "segments", "targets")


def status_key(job_id: str) -> str:
    return f"job:{job_id}:status"


def data_key(job_id: str) -> str:
    return f"job:{job_id}:data"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RedisJobRepository(JobRepository):
    """
    Job ledger stored in Redis hashes.

    The Redis client is shared with the quota ledger and must be created
    with decode_responses=True.
    """

    def __init__(self, client: redis.Redis, clock: Callable[[], datetime] = _utc_now):
        """
        Initialize repository.

        Args:
            client: Redis client (decode_responses=True)
            clock: Returns the current UTC time; injectable for tests
        """
        self.client = client
        self.clock = clock

    def read(self, job_id: str) -> Optional[Job]:
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.hgetall(status_key(job_id))
            pipe.hgetall(data_key(job_id))
            status_data, job_data = pipe.execute()
        except redis.RedisError as e:
            logger.error("job_read_failed", job_id=job_id, error=str(e))
            raise JobStoreError("Failed to read job", job_id=job_id) from e

        if not status_data:
            return None

        return self._to_job(job_id, status_data, job_data or {})

    def update(self, job_id: str, status: JobStatus, fields: Optional[JobUpdate] = None) -> bool:
        logger.info("job_status_update", job_id=job_id, status=status.value)

        try:
            pipe = self.client.pipeline(transaction=True)
            self._queue_write(pipe, job_id, status, fields)
            pipe.execute()
            return True
        except redis.RedisError as e:
            # Status reporting is best-effort; never propagate into the worker
            logger.error("job_status_update_failed", job_id=job_id, status=status.value, error=str(e))
            return False

    def transition(
        self,
        job_id: str,
        allowed: Callable[[Job], bool],
        status: JobStatus,
        fields: Optional[JobUpdate] = None,
    ) -> bool:
        try:
            with self.client.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        # WATCH both hashes; a concurrent write aborts EXEC and we re-check
                        pipe.watch(status_key(job_id), data_key(job_id))
                        status_data = pipe.hgetall(status_key(job_id))
                        job_data = pipe.hgetall(data_key(job_id))

                        if not status_data or not allowed(self._to_job(job_id, status_data, job_data or {})):
                            pipe.unwatch()
                            logger.info("job_transition_rejected", job_id=job_id, status=status.value)
                            return False

                        pipe.multi()
                        self._queue_write(pipe, job_id, status, fields)
                        pipe.execute()
                        logger.info("job_status_update", job_id=job_id, status=status.value, checked=True)
                        return True
                    except redis.WatchError:
                        logger.debug("job_transition_retry", job_id=job_id)
                        continue
        except redis.RedisError as e:
            logger.error("job_transition_failed", job_id=job_id, status=status.value, error=str(e))
            raise JobStoreError("Failed to update job", job_id=job_id) from e

    def _queue_write(self, pipe, job_id: str, status: JobStatus, fields: Optional[JobUpdate]) -> None:
        """Queue the status and field writes for one update on a pipeline."""
        to_set: Dict[str, str] = {}
        to_delete: List[str] = []
        if fields is not None:
            to_set, to_delete = self._serialize(fields)

        pipe.hset(
            status_key(job_id),
            mapping={"status": status.value, "updated_at": self.clock().isoformat()},
        )
        if to_set:
            pipe.hset(data_key(job_id), mapping=to_set)
        if to_delete:
            pipe.hdel(data_key(job_id), *to_delete)

    def _serialize(self, fields: JobUpdate) -> tuple[Dict[str, str], List[str]]:
        """Split explicitly-set fields into hash values to write and names to remove."""
        to_set: Dict[str, str] = {}
        to_delete: List[str] = []

        for name in fields.model_fields_set:
            value = getattr(fields, name)
            if value is None:
                to_delete.append(name)
            elif name in _JSON_FIELDS:
                to_set[name] = json.dumps([item.model_dump(mode="json") for item in value])
            elif isinstance(value, datetime):
                to_set[name] = value.isoformat()
            elif hasattr(value, "value"):
                to_set[name] = value.value
            else:
                to_set[name] = str(value)

        return to_set, sorted(to_delete)

    def _to_job(self, job_id: str, status_data: Dict[str, str], job_data: Dict[str, str]) -> Job:
        merged: Dict[str, Any] = {**job_data, **status_data, "id": job_id}

        for name in _JSON_FIELDS:
            raw = merged.get(name)
            if raw is None:
                continue
            try:
                merged[name] = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("job_field_unparseable", job_id=job_id, field=name)
                merged.pop(name)

        try:
            return Job.model_validate(merged)
        except ValidationError as e:
            raise JobStoreError("Stored job record is invalid", job_id=job_id) from e
