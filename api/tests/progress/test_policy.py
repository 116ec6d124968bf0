"""Tests for the topic unlock policy."""

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from uuid import UUID

from src.progress.policy import (
    TopicStatus,
    can_access_topic,
    is_exam_eligible,
    order_topics,
    status_of,
    topic_statuses,
)


def done(completed: bool = True) -> SimpleNamespace:
    return SimpleNamespace(is_completed=completed)


class TestOrderTopics:
    """Stable ordering by position, creation time, then id."""

    def test_position_first(self) -> None:
        now = datetime.now(UTC)
        topics = [
            SimpleNamespace(id="b", position=2, created_at=now),
            SimpleNamespace(id="a", position=1, created_at=now),
        ]
        assert [t.id for t in order_topics(topics)] == ["a", "b"]

    def test_ties_broken_by_creation_then_id(self) -> None:
        now = datetime.now(UTC)
        first_id = UUID(int=1)
        second_id = UUID(int=2)
        topics = [
            SimpleNamespace(id=second_id, position=0, created_at=now),
            SimpleNamespace(id="late", position=0, created_at=now + timedelta(1)),
            SimpleNamespace(id=first_id, position=0, created_at=now),
        ]
        assert [t.id for t in order_topics(topics)] == [first_id, second_id, "late"]


class TestTopicStatuses:
    """Derived statuses from progress rows."""

    def test_first_topic_always_available(self) -> None:
        assert topic_statuses(["t1", "t2", "t3"], {}) == [
            TopicStatus.AVAILABLE,
            TopicStatus.LOCKED,
            TopicStatus.LOCKED,
        ]

    def test_completion_unlocks_next_only(self) -> None:
        statuses = topic_statuses(["t1", "t2", "t3"], {"t1": done()})
        assert statuses == [
            TopicStatus.COMPLETED,
            TopicStatus.AVAILABLE,
            TopicStatus.LOCKED,
        ]

    def test_unfinished_progress_row_does_not_unlock(self) -> None:
        statuses = topic_statuses(["t1", "t2"], {"t1": done(False)})
        assert statuses == [TopicStatus.AVAILABLE, TopicStatus.LOCKED]

    def test_completed_topic_after_gap_stays_completed(self) -> None:
        """Completion is never revoked, even if an earlier topic was inserted later."""
        statuses = topic_statuses(["new", "t1", "t2"], {"t1": done()})
        assert statuses == [
            TopicStatus.AVAILABLE,
            TopicStatus.COMPLETED,
            TopicStatus.AVAILABLE,
        ]

    def test_status_of_unknown_topic(self) -> None:
        assert status_of(["t1"], {}, "other") is None
        assert can_access_topic(["t1"], {}, "other") is False

    def test_can_access(self) -> None:
        progress = {"t1": done()}
        assert can_access_topic(["t1", "t2", "t3"], progress, "t2") is True
        assert can_access_topic(["t1", "t2", "t3"], progress, "t3") is False


class TestExamEligibility:
    """Every topic must be completed."""

    def test_all_completed(self) -> None:
        assert is_exam_eligible(["t1", "t2"], {"t1": done(), "t2": done()}) is True

    def test_one_missing(self) -> None:
        assert is_exam_eligible(["t1", "t2"], {"t1": done()}) is False

    def test_vacuous_for_empty_course(self) -> None:
        assert is_exam_eligible([], {}) is True
