# governed_rag/usage/rate_limiter.py

"""
Weekly question/upload quotas per client address.

Usage is never stored as a counter: every governed action is an event in
the append-only log and the current count is derived on read.

check_status() followed by record_action() is a soft limit: two requests
from the same address arriving together can both pass the check. Use
consume() where the limit must hold exactly.
"""

import json
import logging
import threading
import weakref
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple
from zoneinfo import ZoneInfo

from governed_rag.config import (
    QUESTIONS_PER_WEEK,
    RATE_LIMIT_TIMEZONE,
    RATE_LIMIT_WINDOW,
    UPLOADS_PER_WEEK,
)
from governed_rag.domain import (
    ActionType,
    RateLimitStatus,
    UsageEvent,
    ensure_utc,
    utcnow,
)
from governed_rag.errors import ValidationError
from governed_rag.usage.event_log import UsageEventLog

logger = logging.getLogger(__name__)


class RollingWindow:
    """The last `length` of time, sliding with the evaluation instant."""

    def __init__(self, length: timedelta = timedelta(days=7)):

        if length <= timedelta(0):
            raise ValueError("Window length must be positive")

        self.length = length

    def start(self, now: datetime) -> datetime:
        return now - self.length

    def includes(self, ts: datetime, now: datetime) -> bool:
        return self.start(now) < ts <= now


class CalendarWeekWindow:
    """Resets at local midnight of `week_start` (0 = Monday) in `tz`."""

    def __init__(self, tz: str = RATE_LIMIT_TIMEZONE, week_start: int = 0):

        if not 0 <= week_start <= 6:
            raise ValueError("week_start must be a weekday number 0-6")

        self.tz = ZoneInfo(tz)
        self.week_start = week_start

    def start(self, now: datetime) -> datetime:

        local = now.astimezone(self.tz)

        days_back = (local.weekday() - self.week_start) % 7

        midnight = (local - timedelta(days=days_back)).replace(
            hour=0, minute=0, second=0, microsecond=0
        )

        return ensure_utc(midnight)

    def includes(self, ts: datetime, now: datetime) -> bool:
        return self.start(now) <= ts <= now


def window_from_config(kind: str = RATE_LIMIT_WINDOW):

    if kind == "rolling":
        return RollingWindow()

    if kind == "calendar":
        return CalendarWeekWindow()

    raise ValueError(f"Unknown rate limit window: {kind}")


class RateLimiter:

    def __init__(
        self,
        event_log: UsageEventLog,
        questions_limit: int = QUESTIONS_PER_WEEK,
        uploads_limit: int = UPLOADS_PER_WEEK,
        window=None,
        clock: Callable[[], datetime] = utcnow,
    ):

        if questions_limit < 0 or uploads_limit < 0:
            raise ValueError("Limits must not be negative")

        self._log = event_log
        self._limits = {
            ActionType.QUESTION: questions_limit,
            ActionType.UPLOAD: uploads_limit,
        }
        self._window = window or RollingWindow()
        self._clock = clock

        # Entries vanish once no caller holds the lock
        self._address_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = (
            weakref.WeakValueDictionary()
        )
        self._address_locks_guard = threading.Lock()

    @property
    def window(self):
        return self._window

    def _now(self, now: Optional[datetime]) -> datetime:
        return ensure_utc(now) if now is not None else self._clock()

    def check_status(
        self,
        client_address: str,
        now: Optional[datetime] = None,
    ) -> RateLimitStatus:

        if not client_address:
            raise ValidationError("client_address is required")

        now = self._now(now)

        counts = Counter(
            e.action_type
            for e in self._log.events(client_address=client_address, until=now)
            if self._window.includes(e.timestamp, now)
        )

        return RateLimitStatus(
            questions_used=counts[ActionType.QUESTION],
            questions_limit=self._limits[ActionType.QUESTION],
            uploads_used=counts[ActionType.UPLOAD],
            uploads_limit=self._limits[ActionType.UPLOAD],
            window_start=self._window.start(now),
        )

    def record_action(
        self,
        client_address: str,
        action_type: ActionType,
        document_id: Optional[str] = None,
        response_time_ms: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> UsageEvent:

        if not client_address:
            raise ValidationError("client_address is required")

        if response_time_ms is not None and response_time_ms < 0:
            raise ValidationError("response_time_ms must not be negative")

        metadata = dict(metadata or {})

        try:
            json.dumps(metadata)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"metadata must be JSON-serializable: {e}") from e

        event = self._log.append(
            UsageEvent(
                client_address=client_address,
                action_type=ActionType(action_type),
                timestamp=self._now(now),
                document_id=document_id,
                response_time_ms=response_time_ms,
                metadata=metadata,
            )
        )

        logger.info(
            "Usage recorded",
            extra={
                "client_address": client_address,
                "action_type": event.action_type.value,
                "doc_id": document_id,
                "response_time_ms": response_time_ms,
            },
        )

        return event

    def _lock_for(self, client_address: str) -> threading.Lock:

        with self._address_locks_guard:
            lock = self._address_locks.get(client_address)

            if lock is None:
                lock = threading.Lock()
                self._address_locks[client_address] = lock

            return lock

    def consume(
        self,
        client_address: str,
        action_type: ActionType,
        document_id: Optional[str] = None,
        response_time_ms: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[RateLimitStatus, Optional[UsageEvent]]:
        """
        Atomic check-and-record for one client address.

        Returns the status seen before recording and the new event, or
        None when the quota was already used up.
        """

        action_type = ActionType(action_type)

        with self._lock_for(client_address):

            status = self.check_status(client_address, now=now)

            if not status.allows(action_type):

                logger.warning(
                    "Rate limit reached",
                    extra={
                        "client_address": client_address,
                        "action_type": action_type.value,
                        "used": status.used(action_type),
                        "limit": status.limit(action_type),
                    },
                )

                return status, None

            event = self.record_action(
                client_address,
                action_type,
                document_id=document_id,
                response_time_ms=response_time_ms,
                metadata=metadata,
                now=now,
            )

        return status, event
