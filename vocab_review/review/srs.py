"""Spaced-repetition scheduling based on the SM-2 update rule."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Hashable, Optional

from .errors import InvalidGrade


DEFAULT_EASINESS_FACTOR = 2.5
MIN_EASINESS_FACTOR = 1.3
FAILURE_EASINESS_PENALTY = 0.2
MAX_INTERVAL_DAYS = 365


class Grade(Enum):
    """Recall quality reported by the learner, ordered from worst to best."""

    AGAIN = "again"
    HARD = "hard"
    GOOD = "good"
    EASY = "easy"

    @property
    def quality(self) -> int:
        """Position of the grade on the classic 0-5 SM-2 scale."""
        return _QUALITY[self]

    @property
    def is_failure(self) -> bool:
        return self is Grade.AGAIN

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Grade):
            return NotImplemented
        return self.quality < other.quality


_QUALITY = {
    Grade.AGAIN: 2,
    Grade.HARD: 3,
    Grade.GOOD: 4,
    Grade.EASY: 5,
}


@dataclass(frozen=True, slots=True)
class ScheduleState:
    """Scheduling fields of a vocabulary item."""

    item_id: Hashable
    interval_days: int
    repetition_count: int
    easiness_factor: float
    next_review_at: datetime
    last_reviewed_at: Optional[datetime] = None

    def is_due(self, now: datetime) -> bool:
        return self.next_review_at <= now


def new_schedule_state(item_id: Hashable, now: datetime) -> ScheduleState:
    """Return the schedule of an item that has never been reviewed and is due immediately."""
    return ScheduleState(
        item_id=item_id,
        interval_days=1,
        repetition_count=0,
        easiness_factor=DEFAULT_EASINESS_FACTOR,
        next_review_at=now,
        last_reviewed_at=None,
    )


def compute_next_state(
    current: ScheduleState,
    grade: Grade,
    now: datetime,
    *,
    max_interval_days: int = MAX_INTERVAL_DAYS,
) -> ScheduleState:
    """Apply one review with the given grade and return the resulting schedule.

    A failed recall restarts the repetition sequence and lowers the easiness
    factor by a fixed penalty. A successful recall grows the interval: one day
    after the first success, six after the second, then the previous interval
    multiplied by the updated easiness factor. The easiness factor never drops
    below ``MIN_EASINESS_FACTOR`` and the interval is capped at
    ``max_interval_days``.
    """
    if not isinstance(grade, Grade):
        raise InvalidGrade(grade)

    easiness_factor = current.easiness_factor or DEFAULT_EASINESS_FACTOR

    if grade.is_failure:
        repetition = 0
        interval = 1
        easiness_factor = max(MIN_EASINESS_FACTOR, easiness_factor - FAILURE_EASINESS_PENALTY)
    else:
        quality = grade.quality
        repetition = max(0, current.repetition_count) + 1
        easiness_factor += 0.1 - (5 - quality) * (0.08 + (5 - quality) * 0.02)
        if easiness_factor < MIN_EASINESS_FACTOR:
            easiness_factor = MIN_EASINESS_FACTOR
        if repetition == 1:
            interval = 1
        elif repetition == 2:
            interval = 6
        else:
            interval = max(1, round(max(1, current.interval_days) * easiness_factor))

    if interval > max_interval_days:
        interval = max(1, max_interval_days)

    return replace(
        current,
        interval_days=interval,
        repetition_count=repetition,
        easiness_factor=easiness_factor,
        last_reviewed_at=now,
        next_review_at=now + timedelta(days=interval),
    )
