"""Spaced-repetition scheduling and review session management."""

from .errors import (
    AlreadyGraded,
    DuplicateSubmission,
    InvalidGrade,
    OutOfSyncSubmission,
    PersistFailure,
    RepositoryError,
    ReviewError,
    SessionError,
    StaleScheduleWrite,
)
from .grading import QUALITY_LABELS, from_binary, from_correct, to_grade
from .repository import ItemRepository, ItemSnapshot
from .session import (
    EmptySession,
    ReviewSession,
    ReviewSessionManager,
    SessionProgress,
    SessionStarted,
    SessionState,
    SubmissionResult,
    SubmissionStatus,
)
from .srs import Grade, ScheduleState, compute_next_state, new_schedule_state

__all__ = [
    "AlreadyGraded",
    "DuplicateSubmission",
    "EmptySession",
    "Grade",
    "InvalidGrade",
    "ItemRepository",
    "ItemSnapshot",
    "OutOfSyncSubmission",
    "PersistFailure",
    "QUALITY_LABELS",
    "RepositoryError",
    "ReviewError",
    "ReviewSession",
    "ReviewSessionManager",
    "ScheduleState",
    "SessionError",
    "SessionProgress",
    "SessionStarted",
    "SessionState",
    "StaleScheduleWrite",
    "SubmissionResult",
    "SubmissionStatus",
    "compute_next_state",
    "from_binary",
    "from_correct",
    "new_schedule_state",
    "to_grade",
]
