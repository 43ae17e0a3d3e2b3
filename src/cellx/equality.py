"""Equality policy — decides whether a write is worth telling subscribers about.

Identity is the only comparison made. Structural equality is never consulted:
a distinct-but-equal object always notifies, and an identical object notifies
or not depending on the mode.
"""

from __future__ import annotations

import enum
from decimal import Decimal
from fractions import Fraction
from typing import Sequence

_PRIMITIVE_TYPES = (bool, int, float, complex, Decimal, Fraction, str, bytes, enum.Enum)


class EqualityMode(str, enum.Enum):
    """How a cell treats a write of an identical value.

    NEVER:     subscribers are never skipped.
    PRIMITIVE: skipped when the identical value is a primitive (None included).
    ALWAYS:    skipped whenever the value is identical.
    """

    NEVER = "never"
    PRIMITIVE = "primitive"
    ALWAYS = "always"


def is_primitive(value: object) -> bool:
    """Immutable scalars, enum members and None. Everything else is not."""
    return value is None or isinstance(value, _PRIMITIVE_TYPES)


def should_notify(old: object, new: object, mode: EqualityMode | str) -> bool:
    if new is not old:
        return True
    mode = EqualityMode(mode)
    if mode is EqualityMode.NEVER:
        return True
    if mode is EqualityMode.ALWAYS:
        return False
    return not is_primitive(new)


def should_any_notify(
    olds: Sequence[object], news: Sequence[object], mode: EqualityMode | str
) -> bool:
    """should_notify() over two value lists. Differing lengths always notify."""
    if len(olds) != len(news):
        return True
    return any(should_notify(old, new, mode) for old, new in zip(olds, news))
