from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Dict, Hashable, List, Optional, Tuple

import pytest

from vocab_review.review import (
    AlreadyGraded,
    DuplicateSubmission,
    EmptySession,
    InvalidGrade,
    ItemSnapshot,
    OutOfSyncSubmission,
    PersistFailure,
    RepositoryError,
    ReviewSessionManager,
    ScheduleState,
    SessionError,
    SessionStarted,
    SessionState,
    SubmissionStatus,
)


NOW = datetime(2025, 5, 10, 8, 0, tzinfo=timezone.utc)


def _item(item_id: int, hours_overdue: float = 1.0, repetitions: int = 0) -> ItemSnapshot:
    schedule = ScheduleState(
        item_id=item_id,
        interval_days=1,
        repetition_count=repetitions,
        easiness_factor=2.5,
        next_review_at=NOW - timedelta(hours=hours_overdue),
        last_reviewed_at=None,
    )
    return ItemSnapshot(schedule=schedule, term=f"woord {item_id}", translation=f"word {item_id}")


class _StubRepository:
    def __init__(self, items: List[ItemSnapshot]) -> None:
        self.items: Dict[Hashable, ItemSnapshot] = {item.item_id: item for item in items}
        self.updates: List[Tuple[Hashable, ScheduleState]] = []
        self.due_calls = 0
        self.failures_remaining = 0
        self.gate: Optional[asyncio.Event] = None

    async def due_items(self, now: datetime) -> List[ItemSnapshot]:
        self.due_calls += 1
        return [item for item in self.items.values() if item.next_review_at <= now]

    async def update_schedule(self, item_id: Hashable, new_state: ScheduleState) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.failures_remaining:
            self.failures_remaining -= 1
            raise RepositoryError("database is unavailable")
        stored = self.items[item_id]
        if stored.schedule.last_reviewed_at == new_state.last_reviewed_at:
            return
        self.updates.append((item_id, new_state))
        self.items[item_id] = replace(stored, schedule=new_state)


@pytest.mark.asyncio
async def test_empty_due_set_returns_empty_session() -> None:
    manager = ReviewSessionManager(_StubRepository([_item(1, hours_overdue=-5)]))

    result = await manager.start_session(NOW)

    assert isinstance(result, EmptySession)
    assert result.total == 0
    assert manager.current_item() is None
    assert manager.session_progress().total == 0
    assert manager.state is SessionState.COMPLETE


@pytest.mark.asyncio
async def test_queue_is_ordered_by_due_time_then_item_id() -> None:
    repository = _StubRepository([_item(7, 1), _item(3, 5), _item(5, 1), _item(9, -1)])
    manager = ReviewSessionManager(repository)

    result = await manager.start_session(NOW)

    assert isinstance(result, SessionStarted)
    assert [item.item_id for item in result.session.queue] == [3, 5, 7]
    assert manager.state is SessionState.IN_PROGRESS
    assert manager.current_item().item_id == 3


@pytest.mark.asyncio
async def test_grading_every_item_completes_session() -> None:
    repository = _StubRepository([_item(1), _item(2), _item(3)])
    manager = ReviewSessionManager(repository)
    assert manager.state is SessionState.NOT_STARTED
    await manager.start_session(NOW)

    for _ in range(3):
        current = manager.current_item()
        result = await manager.submit_assessment(current.item_id, "good", NOW)
        assert result.applied
        assert result.state.repetition_count == 1

    progress = manager.session_progress()
    assert manager.current_item() is None
    assert progress.index == 3
    assert progress.completed == 3
    assert progress.total == 3
    assert manager.state is SessionState.COMPLETE
    assert [item_id for item_id, _ in repository.updates] == [1, 2, 3]


@pytest.mark.asyncio
async def test_repeated_submission_is_rejected_as_out_of_sync() -> None:
    repository = _StubRepository([_item(1), _item(2)])
    manager = ReviewSessionManager(repository)
    await manager.start_session(NOW)

    first = await manager.submit_assessment(1, "easy", NOW)
    second = await manager.submit_assessment(1, "easy", NOW)

    assert first.status is SubmissionStatus.APPLIED
    assert second.status is SubmissionStatus.REJECTED
    assert isinstance(second.error, OutOfSyncSubmission)
    assert second.retryable is True
    assert len(repository.updates) == 1
    assert manager.session_progress().completed == 1


@pytest.mark.asyncio
async def test_concurrent_submission_for_same_item_is_not_applied_twice() -> None:
    repository = _StubRepository([_item(1), _item(2)])
    repository.gate = asyncio.Event()
    manager = ReviewSessionManager(repository)
    await manager.start_session(NOW)

    first_task = asyncio.create_task(manager.submit_assessment(1, "good", NOW))
    await asyncio.sleep(0)
    second = await manager.submit_assessment(1, "good", NOW)
    repository.gate.set()
    first = await first_task

    assert second.status is SubmissionStatus.PENDING
    assert isinstance(second.error, DuplicateSubmission)
    assert isinstance(second.error, OutOfSyncSubmission)
    assert first.applied
    assert len(repository.updates) == 1


@pytest.mark.asyncio
async def test_invalid_label_leaves_session_untouched() -> None:
    repository = _StubRepository([_item(1)])
    manager = ReviewSessionManager(repository)
    await manager.start_session(NOW)

    result = await manager.submit_assessment(1, "perfect", NOW)

    assert result.status is SubmissionStatus.REJECTED
    assert isinstance(result.error, InvalidGrade)
    assert result.retryable is False
    assert repository.updates == []
    assert manager.current_item().item_id == 1
    with pytest.raises(InvalidGrade):
        result.raise_for_error()


@pytest.mark.asyncio
async def test_persist_failure_keeps_item_ungraded_and_retry_reuses_grading_time() -> None:
    repository = _StubRepository([_item(1), _item(2)])
    repository.failures_remaining = 1
    manager = ReviewSessionManager(repository)
    await manager.start_session(NOW)

    failed = await manager.submit_assessment(1, "good", NOW)

    assert failed.status is SubmissionStatus.FAILED
    assert isinstance(failed.error, PersistFailure)
    assert failed.error.attempts == 1
    assert isinstance(failed.error.__cause__, RepositoryError)
    assert failed.retryable is True
    assert manager.current_item().item_id == 1
    assert manager.session_progress().completed == 0

    retried = await manager.submit_assessment(1, "good", NOW + timedelta(minutes=2))

    assert retried.applied
    assert retried.state.last_reviewed_at == NOW
    assert manager.current_item().item_id == 2
    assert manager.session_progress().completed == 1


@pytest.mark.asyncio
async def test_repeated_persist_failures_become_fatal() -> None:
    repository = _StubRepository([_item(1)])
    repository.failures_remaining = 5
    manager = ReviewSessionManager(repository, max_consecutive_failures=3)
    await manager.start_session(NOW)

    statuses = [(await manager.submit_assessment(1, "hard", NOW)).status for _ in range(2)]
    fatal = await manager.submit_assessment(1, "hard", NOW)

    assert statuses == [SubmissionStatus.FAILED, SubmissionStatus.FAILED]
    assert fatal.status is SubmissionStatus.FATAL
    assert isinstance(fatal.error, SessionError)
    assert fatal.retryable is False
    with pytest.raises(SessionError):
        fatal.raise_for_error()
    assert manager.session_progress().completed == 0


@pytest.mark.asyncio
async def test_navigation_is_clamped_and_never_writes() -> None:
    repository = _StubRepository([_item(1, 3), _item(2, 2), _item(3, 1)])
    manager = ReviewSessionManager(repository)
    await manager.start_session(NOW)

    manager.go_to_previous()
    assert manager.session_progress().index == 0
    for _ in range(5):
        manager.go_to_next()
    assert manager.session_progress().index == 2
    assert manager.current_item().item_id == 3
    manager.go_to_previous()
    assert manager.current_item().item_id == 2

    assert repository.updates == []
    assert repository.due_calls == 1


@pytest.mark.asyncio
async def test_revisiting_a_graded_item_does_not_regrade_it() -> None:
    repository = _StubRepository([_item(1, 2), _item(2, 1)])
    manager = ReviewSessionManager(repository)
    await manager.start_session(NOW)

    await manager.submit_assessment(1, "again", NOW)
    manager.go_to_previous()
    assert manager.current_item().item_id == 1

    result = await manager.submit_assessment(1, "easy", NOW)

    assert result.status is SubmissionStatus.REJECTED
    assert isinstance(result.error, AlreadyGraded)
    assert len(repository.updates) == 1
    assert repository.updates[0][1].repetition_count == 0


@pytest.mark.asyncio
async def test_binary_shortcuts_use_the_same_grades() -> None:
    repository = _StubRepository([_item(1, 2, repetitions=4), _item(2, 1)])
    manager = ReviewSessionManager(repository)
    await manager.start_session(NOW)

    incorrect = await manager.mark_incorrect(1, NOW)
    correct = await manager.mark_correct(2, NOW)

    assert incorrect.state.repetition_count == 0
    assert incorrect.state.interval_days == 1
    assert correct.state.repetition_count == 1
    assert correct.state.easiness_factor == pytest.approx(2.5)


@pytest.mark.asyncio
async def test_restart_rederives_due_items() -> None:
    repository = _StubRepository([_item(1, 2), _item(2, 1)])
    manager = ReviewSessionManager(repository)
    await manager.start_session(NOW)
    await manager.submit_assessment(1, "good", NOW)

    result = await manager.start_session(NOW + timedelta(minutes=5))

    assert isinstance(result, SessionStarted)
    assert [item.item_id for item in result.session.queue] == [2]
    assert manager.session_progress().completed == 0


@pytest.mark.asyncio
async def test_cancelled_submission_still_persists_and_retry_is_idempotent() -> None:
    repository = _StubRepository([_item(1), _item(2)])
    repository.gate = asyncio.Event()
    manager = ReviewSessionManager(repository)
    await manager.start_session(NOW)

    task = asyncio.create_task(manager.submit_assessment(1, "good", NOW))
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert manager.has_pending_writes
    repository.gate.set()
    await manager.drain()
    assert len(repository.updates) == 1
    assert manager.current_item().item_id == 1

    retried = await manager.submit_assessment(1, "good", NOW + timedelta(seconds=30))

    assert retried.applied
    assert len(repository.updates) == 1
    assert manager.current_item().item_id == 2


@pytest.mark.asyncio
async def test_end_session_discards_state() -> None:
    manager = ReviewSessionManager(_StubRepository([_item(1)]))
    await manager.start_session(NOW)

    manager.end_session()

    assert manager.state is SessionState.NOT_STARTED
    assert manager.current_item() is None
    result = await manager.submit_assessment(1, "good", NOW)
    assert isinstance(result.error, OutOfSyncSubmission)


def test_manager_requires_positive_failure_limit() -> None:
    with pytest.raises(ValueError):
        ReviewSessionManager(_StubRepository([]), max_consecutive_failures=0)


@pytest.mark.asyncio
async def test_restart_waits_for_unfinished_writes_before_loading_due_items() -> None:
    repository = _StubRepository([_item(1, 2), _item(2, 1)])
    repository.gate = asyncio.Event()
    manager = ReviewSessionManager(repository)
    await manager.start_session(NOW)

    submit_task = asyncio.create_task(manager.submit_assessment(1, "good", NOW))
    await asyncio.sleep(0)
    restart_task = asyncio.create_task(manager.start_session(NOW + timedelta(minutes=5)))
    await asyncio.sleep(0)

    assert not restart_task.done()
    assert repository.due_calls == 1

    repository.gate.set()
    submitted = await submit_task
    restarted = await restart_task

    assert submitted.applied
    assert isinstance(restarted, SessionStarted)
    assert [item.item_id for item in restarted.session.queue] == [2]
    assert len(repository.updates) == 1


def test_out_of_sync_variants_share_item_attributes() -> None:
    stale = OutOfSyncSubmission(4, 5)
    duplicate = DuplicateSubmission(4)
    graded = AlreadyGraded(4)

    assert (stale.item_id, stale.current_item_id) == (4, 5)
    assert (duplicate.item_id, duplicate.current_item_id) == (4, 4)
    assert (graded.item_id, graded.current_item_id) == (4, 4)
    assert "in flight" in str(duplicate)
    assert "already graded" in str(graded)
    assert (duplicate.retryable, graded.retryable) == (True, False)
