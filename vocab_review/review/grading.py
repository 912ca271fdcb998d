"""Translation of user-facing recall labels into scheduling grades."""

from __future__ import annotations

from typing import Dict, Tuple, Union

from .errors import InvalidGrade
from .srs import Grade


QUALITY_LABELS: Tuple[str, ...] = ("again", "hard", "good", "easy")

_LABEL_TO_GRADE: Dict[str, Grade] = {
    "again": Grade.AGAIN,
    "hard": Grade.HARD,
    "good": Grade.GOOD,
    "easy": Grade.EASY,
}

# Binary shortcut labels are expressed in terms of the four quality labels.
_BINARY_LABELS: Dict[str, str] = {
    "correct": "good",
    "incorrect": "again",
}


def _lookup(table: Dict[str, object], label: object) -> object:
    # Labels are a wire contract: exact strings only.
    if not isinstance(label, str) or label not in table:
        raise InvalidGrade(label)
    return table[label]


def to_grade(label: Union[str, Grade]) -> Grade:
    """Return the grade for one of the four quality labels."""
    if isinstance(label, Grade):
        return label
    return _lookup(_LABEL_TO_GRADE, label)


def from_binary(label: str) -> Grade:
    """Map a ``correct``/``incorrect`` answer onto the four-grade scale."""
    return to_grade(_lookup(_BINARY_LABELS, label))


def from_correct(correct: bool) -> Grade:
    return from_binary("correct" if correct else "incorrect")
