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
Redis-backed daily quota ledger.

Key layout:
    quota:{kind}:{user_id}:{YYYY-MM-DD}   integer counter, UTC date

The first write of the day creates the key with an expiry at the next UTC
midnight; the expiry is the reset mechanism. Admission runs SET NX EX and
INCR in one MULTI/EXEC, and the decision is taken on the value INCR returns,
so concurrent callers at the boundary each see a distinct count.
"""

from datetime import datetime, timezone
from typing import Callable, Dict, Optional

import redis
from structlog import get_logger

from ..models.job import QuotaKind
from .quota_repository import QUOTA_ERROR_SENTINEL, QuotaRepository, seconds_until_utc_midnight

logger = get_logger(__name__)

DEFAULT_LIMITS: Dict[QuotaKind, int] = {
    QuotaKind.ANALYSIS: 3,
    QuotaKind.ADJUSTMENT: 1,
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RedisQuotaLedger(QuotaRepository):
    """Daily quota counters stored in Redis."""

    def __init__(
        self,
        client: redis.Redis,
        limits: Optional[Dict[QuotaKind, int]] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        """
        Initialize ledger.

        Args:
            client: Redis client (decode_responses=True)
            limits: Daily limit per quota kind (defaults: analysis 3, adjustment 1)
            clock: Returns the current UTC time
        """
        self.client = client
        self.limits = {**DEFAULT_LIMITS, **(limits or {})}
        self.clock = clock

    def key_for(self, user_id: str, kind: QuotaKind) -> str:
        now = self.clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        day = now.astimezone(timezone.utc).strftime("%Y-%m-%d")
        return f"quota:{kind.value}:{user_id}:{day}"

    def limit_for(self, kind: QuotaKind) -> int:
        return self.limits[kind]

    def seconds_until_reset(self) -> int:
        return seconds_until_utc_midnight(self.clock())

    def peek(self, user_id: str, kind: QuotaKind) -> int:
        key = self.key_for(user_id, kind)
        try:
            value = self.client.get(key)
        except redis.RedisError as e:
            logger.error("quota_peek_failed", user_id=user_id, kind=kind.value, error=str(e))
            return QUOTA_ERROR_SENTINEL

        return int(value) if value is not None else 0

    def check_and_consume(self, user_id: str, kind: QuotaKind) -> bool:
        key = self.key_for(user_id, kind)
        limit = self.limit_for(kind)
        ttl = self.seconds_until_reset()

        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.set(key, 0, ex=ttl, nx=True)
            pipe.incr(key)
            _, count = pipe.execute()
        except redis.RedisError as e:
            logger.error("quota_consume_failed", user_id=user_id, kind=kind.value, error=str(e))
            return False

        allowed = count <= limit
        logger.info(
            "quota_checked",
            user_id=user_id,
            kind=kind.value,
            used=count,
            limit=limit,
            allowed=allowed,
        )
        return allowed
