"""
Keyset (cursor) pagination.

A cursor is "<sort value>:<id>", both integers. Pages are ordered by
(sort value DESC, id DESC) and each page asks for rows strictly after the
cursor's pair, so no row is skipped or repeated while existing rows keep
their (sort value, id).

Cursor encodings in use:
- explore index: "<score>:<explore_index.id>"
- raw videos:    "<created_at as epoch microseconds>:<videos.id>"
The two are not interchangeable.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Generic, TypeVar

from sqlalchemy import BigInteger, Integer, Select, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")

_EPOCH = datetime(1970, 1, 1)

# Cursor parts must fit a signed 64-bit column
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


class InvalidCursorError(ValueError):
    """Raised for a cursor that isn't two colon-separated integers."""

    def __init__(self, cursor: str):
        self.cursor = cursor
        super().__init__(f"Invalid cursor: {cursor!r}")


@dataclass(frozen=True)
class Cursor:
    value: int
    id: int

    def encode(self) -> str:
        return f"{self.value}:{self.id}"

    @classmethod
    def decode(cls, cursor: str) -> "Cursor":
        parts = cursor.split(":")
        if len(parts) != 2:
            raise InvalidCursorError(cursor)
        try:
            value, row_id = int(parts[0]), int(parts[1])
        except ValueError:
            raise InvalidCursorError(cursor) from None
        if not (_INT64_MIN <= value <= _INT64_MAX and _INT64_MIN <= row_id <= _INT64_MAX):
            raise InvalidCursorError(cursor)
        return cls(value, row_id)


@dataclass
class Page(Generic[T]):
    items: list[T] = field(default_factory=list)
    next_cursor: str | None = None
    has_more: bool = False


def _fits_column(column, value) -> bool:
    """False when an int bound is out of range for a 32-bit INTEGER column."""
    column_type = column.type
    if isinstance(value, int) and isinstance(column_type, Integer) and not isinstance(column_type, BigInteger):
        return -(2**31) <= value <= 2**31 - 1
    return True


def datetime_to_micros(dt: datetime) -> int:
    """Naive UTC datetime -> epoch microseconds (exact)."""
    return (dt - _EPOCH) // timedelta(microseconds=1)


def micros_to_datetime(micros: int) -> datetime:
    return _EPOCH + timedelta(microseconds=micros)


async def paginate_keyset(
    session: AsyncSession,
    stmt: Select,
    sort_column,
    id_column,
    cursor: str | None,
    limit: int,
    *,
    encode_value: Callable[[Any], int] = int,
    decode_value: Callable[[int], Any] = int,
) -> Page:
    """
    Run one page of a keyset query.

    stmt selects a single ORM entity that has both columns as attributes;
    any filtering is already applied to it. encode_value / decode_value
    convert between the column's Python value and the cursor's integer.

    Raises InvalidCursorError for a malformed cursor.
    """
    if limit < 1:
        raise ValueError("limit must be at least 1")

    if cursor:
        position = Cursor.decode(cursor)
        try:
            bound = decode_value(position.value)
        except (OverflowError, ValueError):
            raise InvalidCursorError(cursor) from None
        if not (_fits_column(sort_column, bound) and _fits_column(id_column, position.id)):
            raise InvalidCursorError(cursor)
        stmt = stmt.where(
            or_(
                sort_column < bound,
                and_(sort_column == bound, id_column < position.id),
            )
        )

    stmt = stmt.order_by(sort_column.desc(), id_column.desc()).limit(limit + 1)
    rows = list((await session.execute(stmt)).scalars().all())

    has_more = len(rows) > limit
    if has_more:
        rows = rows[:limit]

    next_cursor = None
    if has_more and rows:
        last = rows[-1]
        next_cursor = Cursor(
            encode_value(getattr(last, sort_column.key)),
            getattr(last, id_column.key),
        ).encode()

    return Page(items=rows, next_cursor=next_cursor, has_more=has_more)
