# tests/test_rate_limiter.py
import concurrent.futures
import os
from datetime import datetime, timedelta, timezone

import pytest

from governed_rag.domain import ActionType
from governed_rag.errors import ValidationError
from governed_rag.usage.event_log import UsageEventLog
from governed_rag.usage.rate_limiter import (
    CalendarWeekWindow,
    RateLimiter,
    RollingWindow,
    window_from_config,
)

from conftest import T0


class TestCheckStatus:

    def test_fresh_client_is_within_limits(self, limiter):
        status = limiter.check_status("10.0.0.1")

        assert status.questions_used == 0
        assert status.uploads_used == 0
        assert status.questions_limit == 5
        assert status.uploads_limit == 2
        assert status.can_question is True
        assert status.can_upload is True

    def test_check_is_read_only(self, limiter, event_log):
        limiter.check_status("10.0.0.1")
        limiter.check_status("10.0.0.1")
        assert len(event_log) == 0

    def test_five_questions_exhaust_a_five_question_limit(self, limiter):
        """Client A, 0 prior events, limit 5 → blocked after 5 recorded questions."""
        for _ in range(5):
            limiter.record_action("A", ActionType.QUESTION)

        status = limiter.check_status("A")

        assert status.questions_used == 5
        assert status.can_question is False
        assert status.can_upload is True

    def test_counts_match_recorded_events_under_limit(self, limiter):
        for _ in range(3):
            limiter.record_action("A", ActionType.QUESTION)
        limiter.record_action("A", ActionType.UPLOAD)

        status = limiter.check_status("A")

        assert status.questions_used == 3
        assert status.uploads_used == 1
        assert status.can_question and status.can_upload

    def test_uploads_have_independent_limit(self, limiter):
        limiter.record_action("A", ActionType.UPLOAD)
        limiter.record_action("A", ActionType.UPLOAD)

        status = limiter.check_status("A")

        assert status.can_upload is False
        assert status.can_question is True

    def test_clients_are_counted_separately(self, limiter):
        for _ in range(5):
            limiter.record_action("A", ActionType.QUESTION)

        assert limiter.check_status("B").can_question is True

    def test_window_start_is_seven_days_back(self, limiter):
        assert limiter.check_status("A").window_start == T0 - timedelta(days=7)

    def test_blank_address_rejected(self, limiter):
        with pytest.raises(ValidationError):
            limiter.check_status("")


class TestRollingWindow:

    def test_usage_ages_out_without_new_events(self, limiter, clock):
        for _ in range(5):
            limiter.record_action("A", ActionType.QUESTION)

        clock.advance(days=6, hours=23)
        assert limiter.check_status("A").can_question is False

        clock.advance(hours=1, seconds=1)
        status = limiter.check_status("A")
        assert status.questions_used == 0
        assert status.can_question is True

    def test_events_age_out_one_by_one(self, limiter, clock):
        for _ in range(5):
            limiter.record_action("A", ActionType.QUESTION)
            clock.advance(hours=1)

        # Oldest event is exactly 7 days old at T0 + 7d
        status = limiter.check_status("A", now=T0 + timedelta(days=7))
        assert status.questions_used == 4
        assert status.can_question is True

    def test_future_events_are_ignored(self, limiter):
        limiter.record_action("A", ActionType.QUESTION, now=T0 + timedelta(hours=1))
        assert limiter.check_status("A", now=T0).questions_used == 0

    def test_window_must_be_positive(self):
        with pytest.raises(ValueError):
            RollingWindow(timedelta(0))


class TestCalendarWeekWindow:

    def test_resets_at_monday_midnight_seoul(self, event_log):
        window = CalendarWeekWindow("Asia/Seoul")
        limiter = RateLimiter(event_log, questions_limit=5, uploads_limit=2, window=window)

        # Monday 2026-10-19 00:00 KST == Sunday 2026-10-18 15:00 UTC
        reset = datetime(2026, 10, 18, 15, 0, tzinfo=timezone.utc)

        limiter.record_action("A", ActionType.QUESTION, now=reset - timedelta(seconds=1))
        limiter.record_action("A", ActionType.QUESTION, now=reset)

        status = limiter.check_status("A", now=reset + timedelta(hours=10))

        assert status.window_start == reset
        assert status.questions_used == 1

    def test_window_start_mid_week(self):
        window = CalendarWeekWindow("UTC")
        wednesday = datetime(2026, 10, 21, 13, 30, tzinfo=timezone.utc)
        assert window.start(wednesday) == datetime(2026, 10, 19, tzinfo=timezone.utc)

    def test_config_selects_window(self):
        assert isinstance(window_from_config("rolling"), RollingWindow)
        assert isinstance(window_from_config("calendar"), CalendarWeekWindow)
        with pytest.raises(ValueError):
            window_from_config("monthly")


class TestRecordAction:

    def test_event_fields(self, limiter):
        event = limiter.record_action(
            "A",
            ActionType.QUESTION,
            document_id="doc_1",
            response_time_ms=1200,
            metadata={"context": "general", "messages": 3},
        )

        assert event.client_address == "A"
        assert event.action_type is ActionType.QUESTION
        assert event.timestamp == T0
        assert event.document_id == "doc_1"
        assert event.response_time_ms == 1200
        assert event.metadata == {"context": "general", "messages": 3}

    def test_accepts_action_name(self, limiter):
        event = limiter.record_action("A", "upload")
        assert event.action_type is ActionType.UPLOAD

    def test_record_does_not_reverify_quota(self, limiter):
        for _ in range(7):
            limiter.record_action("A", ActionType.QUESTION)
        assert limiter.check_status("A").questions_used == 7

    def test_negative_latency_rejected(self, limiter):
        with pytest.raises(ValidationError):
            limiter.record_action("A", ActionType.QUESTION, response_time_ms=-1)

    def test_metadata_is_copied(self, limiter):
        metadata = {"tag": "a"}
        event = limiter.record_action("A", ActionType.QUESTION, metadata=metadata)
        metadata["tag"] = "b"
        assert event.metadata == {"tag": "a"}

    def test_unencodable_metadata_rejected(self, limiter, event_log):
        with pytest.raises(ValidationError):
            limiter.record_action("A", ActionType.QUESTION, metadata={"at": T0})

        assert len(event_log) == 0

    def test_unencodable_metadata_rejected_when_persisted(self, tmp_path, clock):
        path = str(tmp_path / "usage.jsonl")
        log = UsageEventLog(path)
        limiter = RateLimiter(log, questions_limit=5, uploads_limit=2, clock=clock)

        with pytest.raises(ValidationError):
            limiter.record_action("A", ActionType.QUESTION, metadata={"at": T0})

        assert len(log) == 0
        assert not os.path.exists(path)
        assert limiter.check_status("A").questions_used == 0


class TestConsume:

    def test_refuses_once_limit_reached(self, limiter):
        for _ in range(2):
            status, event = limiter.consume("A", ActionType.UPLOAD)
            assert event is not None

        status, event = limiter.consume("A", ActionType.UPLOAD)

        assert event is None
        assert status.uploads_used == 2
        assert status.can_upload is False

    def test_concurrent_consume_never_exceeds_limit(self, limiter, event_log):
        def attempt():
            return limiter.consume("A", ActionType.QUESTION)[1]

        with concurrent.futures.ThreadPoolExecutor(max_workers=10) as executor:
            events = list(executor.map(lambda _: attempt(), range(25)))

        assert sum(1 for e in events if e is not None) == 5
        assert len(event_log) == 5

    def test_address_locks_released_after_use(self, limiter):
        for i in range(1000):
            limiter.consume(f"10.0.{i // 256}.{i % 256}", ActionType.QUESTION)

        assert len(limiter._address_locks) == 0
