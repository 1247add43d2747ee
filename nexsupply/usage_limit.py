"""
Per-caller daily analysis quota.

State is a plain in-memory dict keyed by caller identifier. It is not
synchronised: two concurrent requests from the same caller can both read the
old count, so the limit is approximate under load. Run a single process, or
move this to a shared store, if the quota must be exact.
"""

import logging
import os
from datetime import date
from typing import Callable, Dict, Optional

from .models import UsageEntry, UsageResult

logger = logging.getLogger(__name__)

ANONYMOUS_DAILY_LIMIT = 1
AUTHENTICATED_DAILY_LIMIT = 5

BYPASS_ENV_VAR = "NEXSUPPLY_DISABLE_USAGE_LIMITS"


def day_key(day: date) -> int:
    return day.year * 10000 + day.month * 100 + day.day


def limits_disabled() -> bool:
    return os.environ.get(BYPASS_ENV_VAR) == "true"


class UsageLimiter:
    def __init__(self, today: Optional[Callable[[], date]] = None):
        self._today = today or date.today
        self._usage: Dict[str, UsageEntry] = {}

    def limit_for(self, is_authenticated: bool) -> int:
        return AUTHENTICATED_DAILY_LIMIT if is_authenticated else ANONYMOUS_DAILY_LIMIT

    def increment_usage(self, identifier: str, is_authenticated: bool) -> UsageResult:
        """
        Charge one analysis to ``identifier`` and return the new count.

        Over-limit calls are still counted; the caller compares ``count``
        against ``limit`` (see ``UsageResult.exceeded``).
        """
        limit = self.limit_for(is_authenticated)
        if limits_disabled():
            return UsageResult(count=0, limit=limit)
        return UsageResult(count=self.check_and_increment(identifier, limit), limit=limit)

    def check_and_increment(self, key: str, limit: int) -> int:
        """Bump today's counter for ``key`` and return it. Counters expire at the day boundary."""
        today = day_key(self._today())
        entry = self._usage.get(key)
        if entry is None or entry.date != today:
            entry = UsageEntry(count=1, date=today)
        else:
            entry = UsageEntry(count=entry.count + 1, date=today)
        self._usage[key] = entry

        if entry.count > limit:
            logger.info(f"Usage limit exceeded for {key}: {entry.count}/{limit}")
        return entry.count

    def get_usage(self, identifier: str, is_authenticated: bool) -> UsageResult:
        """Current count for ``identifier`` without charging it."""
        limit = self.limit_for(is_authenticated)
        entry = self._usage.get(identifier)
        if entry is None or entry.date != day_key(self._today()):
            return UsageResult(count=0, limit=limit)
        return UsageResult(count=entry.count, limit=limit)

    def reset(self) -> None:
        self._usage.clear()


usage_limiter = UsageLimiter()


def get_usage_limiter() -> UsageLimiter:
    return usage_limiter
