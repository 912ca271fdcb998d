from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from . import User, UserWord


_COUNTER_COLUMNS = {
    "added": User.words_added,
    "reviewed": User.words_reviewed,
}


@dataclass(slots=True)
class UserStatistics:
    """Counters and vocabulary size describing a learner's progress."""

    chat_id: int
    first_name: Optional[str]
    last_name: Optional[str]
    created_at: datetime
    words_added: int
    words_reviewed: int
    vocabulary_size: int

    @property
    def display_name(self) -> str:
        return self.first_name or self.last_name or "learner"

    def days_active(self, now: datetime) -> int:
        created_at = self.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return max(1, (now.date() - created_at.date()).days + 1)

    def reviews_per_day(self, now: datetime) -> float:
        if not self.words_reviewed:
            return 0.0
        return self.words_reviewed / self.days_active(now)


async def upsert_user(
    session: AsyncSession,
    chat_id: int,
    first_name: Optional[str],
    last_name: Optional[str],
) -> User:
    """Create the learner on first contact or refresh the stored Telegram names."""
    user = await session.get(User, chat_id)
    now = datetime.now(timezone.utc)

    if user is None:
        user = User(
            chat_id=chat_id,
            first_name=first_name,
            last_name=last_name,
            words_added=0,
            words_reviewed=0,
            created_at=now,
            updated_at=now,
        )
        session.add(user)
        return user

    if (user.first_name, user.last_name) != (first_name, last_name):
        user.first_name = first_name
        user.last_name = last_name
        user.updated_at = now
        await session.flush()

    return user


async def increment_user_statistics(
    session: AsyncSession,
    chat_id: int,
    *,
    added: int = 0,
    reviewed: int = 0,
) -> None:
    """Bump the learner's ``words_added``/``words_reviewed`` counters in place."""
    deltas = {"added": added, "reviewed": reviewed}
    if any(delta < 0 for delta in deltas.values()):
        raise ValueError("Statistics counters can only grow.")

    values: Dict[str, object] = {}
    for name, column in _COUNTER_COLUMNS.items():
        if deltas[name]:
            values[column.key] = column + deltas[name]
    if not values:
        return
    values["updated_at"] = datetime.now(timezone.utc)

    await session.execute(
        update(User)
        .where(User.chat_id == chat_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


async def get_user_statistics(session: AsyncSession, chat_id: int) -> Optional[UserStatistics]:
    user = await session.get(User, chat_id)
    if user is None:
        return None

    vocabulary_size = await session.scalar(
        select(func.count())
        .select_from(UserWord)
        .where(UserWord.chat_id == chat_id, UserWord.is_active.is_(True))
    )
    return UserStatistics(
        chat_id=user.chat_id,
        first_name=user.first_name,
        last_name=user.last_name,
        created_at=user.created_at,
        words_added=user.words_added,
        words_reviewed=user.words_reviewed,
        vocabulary_size=int(vocabulary_size or 0),
    )
