"""Contract between the review session manager and the item store."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Hashable, Optional, Protocol, Sequence

from .srs import ScheduleState


@dataclass(frozen=True, slots=True)
class ItemSnapshot:
    """Read-only copy of a vocabulary item taken when a session starts."""

    schedule: ScheduleState
    term: str
    translation: str
    example: Optional[str] = None
    source_lang: Optional[str] = None
    target_lang: Optional[str] = None

    @property
    def item_id(self) -> Hashable:
        return self.schedule.item_id

    @property
    def next_review_at(self) -> datetime:
        return self.schedule.next_review_at


class ItemRepository(Protocol):
    """Operations the session manager needs from persistent storage.

    ``update_schedule`` must be durable before it returns: a subsequent
    ``due_items`` call has to observe the new schedule. Failures are reported
    by raising :class:`~vocab_review.review.errors.RepositoryError`.
    """

    async def due_items(self, now: datetime) -> Sequence[ItemSnapshot]:
        ...

    async def update_schedule(self, item_id: Hashable, new_state: ScheduleState) -> None:
        ...
