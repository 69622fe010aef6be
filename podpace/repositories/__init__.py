"""
Repository layer for data persistence.

This module provides abstract interfaces and Redis implementations for the
job ledger and the daily quota ledger, following the Repository Pattern to
separate pipeline logic from storage layout.
"""

from .job_repository import JobRepository
from .quota_repository import QUOTA_ERROR_SENTINEL, QuotaRepository, QuotaUsage
from .redis_job_repository import RedisJobRepository
from .redis_quota_repository import RedisQuotaLedger

__all__ = [
    "JobRepository",
    "QuotaRepository",
    "QuotaUsage",
    "QUOTA_ERROR_SENTINEL",
    "RedisJobRepository",
    "RedisQuotaLedger",
]
