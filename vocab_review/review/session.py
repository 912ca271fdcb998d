"""Review session state machine built on top of an item repository."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Hashable, Optional, Set, Tuple, Union

from .errors import (
    AlreadyGraded,
    DuplicateSubmission,
    InvalidGrade,
    OutOfSyncSubmission,
    PersistFailure,
    RepositoryError,
    ReviewError,
    SessionError,
)
from .grading import from_correct, to_grade
from .repository import ItemRepository, ItemSnapshot
from .srs import MAX_INTERVAL_DAYS, Grade, ScheduleState, compute_next_state


LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_CONSECUTIVE_FAILURES = 3


class SessionState(Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"


@dataclass(slots=True)
class ReviewSession:
    """In-memory progress through a fixed queue of due items."""

    queue: Tuple[ItemSnapshot, ...]
    started_at: datetime
    pointer: int = 0
    completed_count: int = 0
    graded: Set[Hashable] = field(default_factory=set)

    @property
    def total(self) -> int:
        return len(self.queue)

    @property
    def is_complete(self) -> bool:
        return self.pointer >= len(self.queue)


@dataclass(frozen=True, slots=True)
class SessionProgress:
    index: int
    total: int
    completed: int


@dataclass(frozen=True, slots=True)
class SessionStarted:
    """A session was created with at least one due item."""

    session: ReviewSession

    @property
    def total(self) -> int:
        return self.session.total


@dataclass(frozen=True, slots=True)
class EmptySession:
    """No items were due when the session was requested."""

    started_at: datetime
    total: int = 0


SessionStartResult = Union[SessionStarted, EmptySession]


class SubmissionStatus(Enum):
    APPLIED = "applied"
    PENDING = "pending"
    REJECTED = "rejected"
    FAILED = "failed"
    FATAL = "fatal"


@dataclass(frozen=True, slots=True)
class SubmissionResult:
    """Outcome of grading an item.

    ``APPLIED`` means the new schedule is persisted and the session advanced.
    ``PENDING`` means an earlier grading of the same item has not resolved
    yet. ``REJECTED`` covers invalid labels and stale item references,
    ``FAILED`` a retryable persistence error, and ``FATAL`` the point where
    the session should be ended.
    """

    status: SubmissionStatus
    item_id: Hashable
    grade: Optional[Grade] = None
    state: Optional[ScheduleState] = None
    error: Optional[ReviewError] = None

    @property
    def applied(self) -> bool:
        return self.status is SubmissionStatus.APPLIED

    @property
    def retryable(self) -> bool:
        return self.error is not None and self.error.retryable

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error


@dataclass(slots=True)
class _PendingGrade:
    grade: Grade
    state: ScheduleState
    failures: int = 0


class ReviewSessionManager:
    """Drive a single learner through the items that are due for review.

    The manager owns the session state; schedule changes reach storage only
    through ``ItemRepository.update_schedule``. Navigation never changes a
    schedule, and an item graded in the current session cannot be graded a
    second time.
    """

    def __init__(
        self,
        repository: ItemRepository,
        *,
        max_consecutive_failures: int = DEFAULT_MAX_CONSECUTIVE_FAILURES,
        max_interval_days: int = MAX_INTERVAL_DAYS,
    ) -> None:
        if max_consecutive_failures < 1:
            raise ValueError("max_consecutive_failures must be a positive integer.")
        self._repository = repository
        self._max_consecutive_failures = max_consecutive_failures
        self._max_interval_days = max_interval_days
        self._session: Optional[ReviewSession] = None
        self._inflight: Dict[Hashable, asyncio.Future] = {}
        self._pending: Dict[Hashable, _PendingGrade] = {}

    @property
    def state(self) -> SessionState:
        if self._session is None:
            return SessionState.NOT_STARTED
        if self._session.is_complete:
            return SessionState.COMPLETE
        return SessionState.IN_PROGRESS

    @property
    def has_pending_writes(self) -> bool:
        return bool(self._inflight)

    async def start_session(self, now: datetime) -> SessionStartResult:
        """Load the due items and begin a new session, replacing any previous one.

        Repository failures propagate as ``RepositoryError``; the previous
        session, if any, is left untouched in that case.
        """
        # Grades still being written must be durable before the due set is read.
        await self.drain()
        items = await self._repository.due_items(now)
        queue = tuple(sorted(items, key=lambda item: (item.next_review_at, item.item_id)))

        self._session = ReviewSession(queue=queue, started_at=now)
        self._pending.clear()

        if not queue:
            LOGGER.info("No items due at %s; review session is empty.", now.isoformat())
            return EmptySession(started_at=now)

        LOGGER.info("Started review session with %d due items.", len(queue))
        return SessionStarted(self._session)

    def current_item(self) -> Optional[ItemSnapshot]:
        session = self._session
        if session is None or session.is_complete:
            return None
        return session.queue[session.pointer]

    def go_to_next(self) -> None:
        self._move(1)

    def go_to_previous(self) -> None:
        self._move(-1)

    def _move(self, step: int) -> None:
        session = self._session
        if session is None or session.is_complete:
            return
        last_index = len(session.queue) - 1
        session.pointer = min(max(session.pointer + step, 0), last_index)

    async def submit_assessment(
        self,
        item_id: Hashable,
        label: Union[str, Grade],
        now: datetime,
    ) -> SubmissionResult:
        """Grade the current item and persist its new schedule."""
        if item_id in self._inflight:
            return SubmissionResult(
                SubmissionStatus.PENDING, item_id, error=DuplicateSubmission(item_id)
            )

        session = self._session
        current = self.current_item()
        if session is None or current is None or current.item_id != item_id:
            current_id = current.item_id if current is not None else None
            return SubmissionResult(
                SubmissionStatus.REJECTED,
                item_id,
                error=OutOfSyncSubmission(item_id, current_id),
            )

        if item_id in session.graded:
            return SubmissionResult(
                SubmissionStatus.REJECTED,
                item_id,
                error=AlreadyGraded(item_id),
            )

        try:
            grade = to_grade(label)
        except InvalidGrade as exc:
            return SubmissionResult(SubmissionStatus.REJECTED, item_id, error=exc)

        pending = self._pending.get(item_id)
        if pending is None or pending.grade is not grade:
            # A retry of the same grade reuses the earlier state and timestamp.
            new_state = compute_next_state(
                current.schedule,
                grade,
                now,
                max_interval_days=self._max_interval_days,
            )
            failures = pending.failures if pending is not None else 0
            pending = _PendingGrade(grade=grade, state=new_state, failures=failures)
            self._pending[item_id] = pending

        graded_index = session.pointer
        write = asyncio.ensure_future(self._repository.update_schedule(item_id, pending.state))
        self._inflight[item_id] = write
        write.add_done_callback(lambda task: self._forget_write(item_id, task))

        try:
            await asyncio.shield(write)
        except RepositoryError as exc:
            pending.failures += 1
            if pending.failures >= self._max_consecutive_failures:
                LOGGER.error(
                    "Giving up on item %s after %d failed writes.", item_id, pending.failures
                )
                fatal = SessionError(
                    f"Schedule for item {item_id!r} could not be saved after "
                    f"{pending.failures} attempts.",
                    item_id=item_id,
                )
                fatal.__cause__ = exc
                return SubmissionResult(SubmissionStatus.FATAL, item_id, grade=grade, error=fatal)

            LOGGER.warning(
                "Failed to persist schedule for item %s (attempt %d): %s",
                item_id,
                pending.failures,
                exc,
            )
            failure = PersistFailure(item_id, pending.failures)
            failure.__cause__ = exc
            return SubmissionResult(SubmissionStatus.FAILED, item_id, grade=grade, error=failure)

        self._pending.pop(item_id, None)
        if session is self._session:
            session.graded.add(item_id)
            session.completed_count += 1
            if session.pointer <= graded_index:
                session.pointer = graded_index + 1
            if session.is_complete:
                LOGGER.info(
                    "Review session complete: %d of %d items graded.",
                    session.completed_count,
                    session.total,
                )

        return SubmissionResult(SubmissionStatus.APPLIED, item_id, grade=grade, state=pending.state)

    async def mark_correct(self, item_id: Hashable, now: datetime) -> SubmissionResult:
        return await self.submit_assessment(item_id, from_correct(True), now)

    async def mark_incorrect(self, item_id: Hashable, now: datetime) -> SubmissionResult:
        return await self.submit_assessment(item_id, from_correct(False), now)

    def _forget_write(self, item_id: Hashable, task: asyncio.Future) -> None:
        if self._inflight.get(item_id) is task:
            del self._inflight[item_id]
        if not task.cancelled() and task.exception() is not None:
            LOGGER.debug("Schedule write for item %s finished with an error.", item_id)

    async def drain(self) -> None:
        """Wait for schedule writes that are still running."""
        if self._inflight:
            await asyncio.gather(*self._inflight.values(), return_exceptions=True)

    def end_session(self) -> None:
        if self._session is not None:
            LOGGER.info(
                "Ending review session after %d of %d items.",
                self._session.completed_count,
                self._session.total,
            )
        self._session = None
        self._pending.clear()

    def session_progress(self) -> SessionProgress:
        session = self._session
        if session is None:
            return SessionProgress(index=0, total=0, completed=0)
        return SessionProgress(
            index=session.pointer,
            total=session.total,
            completed=session.completed_count,
        )
