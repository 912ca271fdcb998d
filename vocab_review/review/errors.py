"""Error taxonomy shared by the scheduling engine and the review session manager."""

from __future__ import annotations

from typing import Optional


class ReviewError(Exception):
    """Base class for failures surfaced to the presentation layer."""

    retryable: bool = False


class InvalidGrade(ReviewError, ValueError):
    """Raised when a quality label or grade is not one of the recognized values."""

    def __init__(self, value: object) -> None:
        super().__init__(f"Unrecognized recall grade: {value!r}")
        self.value = value


class OutOfSyncSubmission(ReviewError):
    """A grade was submitted for an item that is no longer the current one."""

    retryable = True

    def __init__(
        self,
        item_id: object,
        current_item_id: object,
        message: Optional[str] = None,
    ) -> None:
        super().__init__(
            message
            or f"Item {item_id!r} is not the current review item (current: {current_item_id!r})."
        )
        self.item_id = item_id
        self.current_item_id = current_item_id


class DuplicateSubmission(OutOfSyncSubmission):
    """A grade was submitted while an earlier grading of the same item is still running."""

    def __init__(self, item_id: object) -> None:
        super().__init__(
            item_id, item_id, f"Item {item_id!r} already has a grading operation in flight."
        )


class AlreadyGraded(OutOfSyncSubmission):
    """The item was already graded in this session; navigation back is view-only."""

    retryable = False

    def __init__(self, item_id: object) -> None:
        super().__init__(item_id, item_id, f"Item {item_id!r} was already graded in this session.")


class PersistFailure(ReviewError):
    """The repository could not store the new schedule; the grade can be retried."""

    retryable = True

    def __init__(self, item_id: object, attempts: int) -> None:
        super().__init__(f"Failed to persist schedule for item {item_id!r} (attempt {attempts}).")
        self.item_id = item_id
        self.attempts = attempts


class SessionError(ReviewError):
    """Fatal session failure; the caller should end the session."""

    def __init__(self, message: str, item_id: Optional[object] = None) -> None:
        super().__init__(message)
        self.item_id = item_id


class RepositoryError(Exception):
    """Raised by item repositories when a read or write cannot be completed."""


class StaleScheduleWrite(RepositoryError):
    """The stored schedule was graded more recently than the incoming write."""
