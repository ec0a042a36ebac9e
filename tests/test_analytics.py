# tests/test_analytics.py
from datetime import timedelta

import pytest

from governed_rag.domain import ActionType, TimeWindow, UsageEvent, UsageSummary
from governed_rag.errors import StorageError, ValidationError
from governed_rag.usage.analytics import UsageAnalytics
from governed_rag.usage.event_log import UsageEventLog

from conftest import T0


def event(address, action, minutes=0, response_time_ms=None):
    return UsageEvent(
        client_address=address,
        action_type=action,
        timestamp=T0 + timedelta(minutes=minutes),
        response_time_ms=response_time_ms,
    )


@pytest.fixture
def analytics(event_log, clock):
    return UsageAnalytics(event_log, clock=clock)


class TestSummarize:

    def test_empty_log_gives_zeroed_summary(self, analytics):
        window = TimeWindow(T0 - timedelta(days=1), T0)
        assert analytics.summarize(window) == UsageSummary()

    def test_totals_and_distinct_clients(self, analytics, event_log):
        event_log.append(event("A", ActionType.QUESTION, 1, 1000))
        event_log.append(event("A", ActionType.QUESTION, 2, 3000))
        event_log.append(event("B", ActionType.UPLOAD, 3, 500))
        event_log.append(event("C", ActionType.QUESTION, 4))

        summary = analytics.summarize(TimeWindow(T0, T0 + timedelta(hours=1)))

        assert summary.total_questions == 3
        assert summary.total_uploads == 1
        assert summary.distinct_clients == 3
        # Only timed questions count towards the average
        assert summary.average_response_time_ms == 2000.0

    def test_window_is_half_open(self, analytics, event_log):
        event_log.append(event("A", ActionType.QUESTION, 0))
        event_log.append(event("B", ActionType.QUESTION, 60))

        summary = analytics.summarize(TimeWindow(T0, T0 + timedelta(minutes=60)))

        assert summary.total_questions == 1
        assert summary.distinct_clients == 1

    def test_no_timed_events_averages_zero(self, analytics, event_log):
        event_log.append(event("A", ActionType.UPLOAD, 1, 800))

        summary = analytics.summarize(TimeWindow(T0, T0 + timedelta(hours=1)))

        assert summary.average_response_time_ms == 0.0

    def test_inverted_window_rejected(self):
        with pytest.raises(ValidationError):
            TimeWindow(T0, T0 - timedelta(seconds=1))


class TestDashboard:

    def test_dashboard_numbers(self, analytics, event_log):
        event_log.append(event("A", ActionType.QUESTION, -60 * 24 * 3, 900))
        event_log.append(event("A", ActionType.QUESTION, -90, 1800))
        event_log.append(event("B", ActionType.UPLOAD, -30))
        event_log.append(event("C", ActionType.QUESTION, -10, 2200))

        data = analytics.dashboard()

        assert data == {
            "questionsToday": 2,
            "uploadsToday": 1,
            "questionsThisWeek": 3,
            "uploadsThisWeek": 1,
            "avgResponseTime": 2.0,
            "activeUsers": 2,
        }

    def test_dashboard_on_empty_log(self, analytics):
        data = analytics.dashboard()
        assert data["questionsToday"] == 0
        assert data["activeUsers"] == 0
        assert data["avgResponseTime"] == 0.0


class TestEventLog:

    def test_filters_by_client_and_time(self, event_log):
        event_log.append(event("A", ActionType.QUESTION, 0))
        event_log.append(event("A", ActionType.QUESTION, 10))
        event_log.append(event("B", ActionType.QUESTION, 10))

        found = event_log.events(client_address="A", after=T0, until=T0 + timedelta(minutes=10))

        assert [e.timestamp for e in found] == [T0 + timedelta(minutes=10)]

    def test_unencodable_event_rejected(self, event_log):
        bad = UsageEvent(
            client_address="A",
            action_type=ActionType.QUESTION,
            timestamp=T0,
            metadata={"at": T0},
        )

        with pytest.raises(StorageError):
            event_log.append(bad)

        assert len(event_log) == 0

    def test_persists_as_json_lines(self, tmp_path):
        path = str(tmp_path / "usage.jsonl")
        log = UsageEventLog(path)
        original = log.append(
            UsageEvent(
                client_address="A",
                action_type=ActionType.QUESTION,
                timestamp=T0,
                document_id="doc_1",
                response_time_ms=1500,
                metadata={"context": "general"},
            )
        )

        reloaded = UsageEventLog(path)

        assert len(reloaded) == 1
        assert reloaded.events()[0] == original
