"""Topic unlock policy.

Pure functions over durable progress rows. Nothing here is persisted:
statuses are recomputed on every call from the current topic order and
the learner's TopicProgress rows.

A topic is:
- completed when its progress row says so,
- available when it is the first topic or the previous topic is completed,
- locked otherwise.
"""

from collections.abc import Iterable, Mapping, Sequence
from enum import Enum
from typing import Any, Protocol, TypeVar


class TopicStatus(str, Enum):
    """Derived status of a topic for one learner."""

    COMPLETED = "completed"
    AVAILABLE = "available"
    LOCKED = "locked"


class OrderedTopic(Protocol):
    id: Any
    position: int
    created_at: Any


class CompletionState(Protocol):
    is_completed: bool


T = TypeVar("T", bound=OrderedTopic)


def order_topics(topics: Iterable[T]) -> list[T]:
    """Stable course order: position, then creation time, then id."""
    return sorted(topics, key=lambda t: (t.position, t.created_at, str(t.id)))


def _is_completed(progress_by_topic: Mapping[Any, CompletionState], topic_id) -> bool:
    progress = progress_by_topic.get(topic_id)
    return bool(progress and progress.is_completed)


def topic_statuses(
    topic_ids: Sequence[Any],
    progress_by_topic: Mapping[Any, CompletionState],
) -> list[TopicStatus]:
    """Status of each topic, in the order of ``topic_ids``."""
    statuses: list[TopicStatus] = []
    previous_completed = True
    for topic_id in topic_ids:
        completed = _is_completed(progress_by_topic, topic_id)
        if completed:
            statuses.append(TopicStatus.COMPLETED)
        elif previous_completed:
            statuses.append(TopicStatus.AVAILABLE)
        else:
            statuses.append(TopicStatus.LOCKED)
        previous_completed = completed
    return statuses


def status_of(
    topic_ids: Sequence[Any],
    progress_by_topic: Mapping[Any, CompletionState],
    topic_id,
) -> TopicStatus | None:
    """Status of one topic, or None if it is not part of ``topic_ids``."""
    try:
        index = list(topic_ids).index(topic_id)
    except ValueError:
        return None
    return topic_statuses(topic_ids, progress_by_topic)[index]


def can_access_topic(
    topic_ids: Sequence[Any],
    progress_by_topic: Mapping[Any, CompletionState],
    topic_id,
) -> bool:
    """True when the topic exists in the course and is not locked."""
    status = status_of(topic_ids, progress_by_topic, topic_id)
    return status is not None and status != TopicStatus.LOCKED


def is_exam_eligible(
    topic_ids: Sequence[Any],
    progress_by_topic: Mapping[Any, CompletionState],
) -> bool:
    """Every topic completed. Vacuously true for a course without topics."""
    return all(_is_completed(progress_by_topic, topic_id) for topic_id in topic_ids)
