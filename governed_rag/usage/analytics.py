import logging
from datetime import datetime, time, timedelta, timezone
from typing import Callable, Dict, Optional

from governed_rag.domain import (
    ActionType,
    TimeWindow,
    UsageSummary,
    ensure_utc,
    utcnow,
)
from governed_rag.usage.event_log import UsageEventLog

logger = logging.getLogger(__name__)

ACTIVE_CLIENT_WINDOW = timedelta(hours=1)


class UsageAnalytics:
    """Platform-wide statistics derived from the usage log. Read-only."""

    def __init__(
        self,
        event_log: UsageEventLog,
        quota_window=None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._log = event_log
        self._quota_window = quota_window
        self._clock = clock

    def summarize(self, window: TimeWindow) -> UsageSummary:

        events = self._log.in_window(window)

        if not events:
            return UsageSummary()

        questions = [e for e in events if e.action_type is ActionType.QUESTION]

        timings = [
            e.response_time_ms for e in questions
            if e.response_time_ms is not None
        ]

        return UsageSummary(
            total_questions=len(questions),
            total_uploads=len(events) - len(questions),
            distinct_clients=len({e.client_address for e in events}),
            average_response_time_ms=(
                sum(timings) / len(timings) if timings else 0.0
            ),
        )

    def dashboard(self, now: Optional[datetime] = None) -> Dict:
        """
        Numbers shown next to the chat widget: today, this quota window,
        and who was active in the last hour.
        """

        now = ensure_utc(now) if now is not None else self._clock()

        # Windows are half-open, so push the end just past `now`
        end = now + timedelta(microseconds=1)

        day_start = datetime.combine(now.date(), time.min, tzinfo=timezone.utc)

        today = self.summarize(TimeWindow(day_start, end))

        week_start = (
            self._quota_window.start(now)
            if self._quota_window is not None
            else now - timedelta(days=7)
        )

        week = self.summarize(TimeWindow(week_start, end))

        active = self.summarize(TimeWindow(now - ACTIVE_CLIENT_WINDOW, end))

        return {
            "questionsToday": today.total_questions,
            "uploadsToday": today.total_uploads,
            "questionsThisWeek": week.total_questions,
            "uploadsThisWeek": week.total_uploads,
            "avgResponseTime": round(today.average_response_time_ms / 1000, 1),
            "activeUsers": active.distinct_clients,
        }
