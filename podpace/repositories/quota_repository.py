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
Abstract repository for the per-user daily quota ledger.

Counters are keyed by (kind, user, UTC date) and reset at UTC midnight.
check_and_consume is the only mutating operation and must be atomic: two
concurrent callers can never both spend the last unit of a day's quota.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from ..models.job import QuotaKind

# Returned by peek() when the store cannot be read, so callers reading usage
# see the quota as exhausted instead of free
QUOTA_ERROR_SENTINEL = 999


@dataclass(frozen=True)
class QuotaUsage:
    """Snapshot of one user's usage of one quota kind today."""

    limit: int
    used: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)

    def to_dict(self) -> dict:
        return {"limit": self.limit, "used": self.used, "remaining": self.remaining}


def seconds_until_utc_midnight(now: datetime) -> int:
    """Whole seconds from now until the next UTC midnight (at least 1)."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    tomorrow = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return max(1, int((tomorrow - now).total_seconds()))


class QuotaRepository(ABC):
    """Abstract repository for daily usage counters."""

    @abstractmethod
    def limit_for(self, kind: QuotaKind) -> int:
        """Daily limit configured for a quota kind."""
        pass

    @abstractmethod
    def peek(self, user_id: str, kind: QuotaKind) -> int:
        """
        Read today's usage without changing it.

        Returns:
            Current count, 0 if nothing used today, or QUOTA_ERROR_SENTINEL
            if the store cannot be read
        """
        pass

    @abstractmethod
    def check_and_consume(self, user_id: str, kind: QuotaKind) -> bool:
        """
        Atomically spend one unit if the user is under today's limit.

        Fails closed: a storage error denies the request.

        Returns:
            True if the unit was granted, False otherwise
        """
        pass

    def usage(self, user_id: str, kind: QuotaKind) -> QuotaUsage:
        """Today's usage for display, built on peek()."""
        return QuotaUsage(limit=self.limit_for(kind), used=self.peek(user_id, kind))

    def seconds_until_reset(self) -> int:
        """Seconds until counters roll over; overridden where a clock is injected."""
        return seconds_until_utc_midnight(datetime.now(timezone.utc))
