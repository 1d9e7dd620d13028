"""Offset/limit compilation and page metadata."""

import math
from dataclasses import dataclass, field
from typing import Any, Generic, List, TypeVar

from .constants import DEFAULT_LIMIT, DEFAULT_PAGE, MAX_LIMIT

T = TypeVar("T")


@dataclass(frozen=True)
class PageRequest:
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass(frozen=True)
class PageMeta:
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int
    has_next_page: bool
    has_prev_page: bool


@dataclass
class PageResult(Generic[T]):
    items: List[T] = field(default_factory=list)
    meta: PageMeta | None = None


def _to_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def compile_page(page: Any = None, limit: Any = None) -> PageRequest:
    """Normalise raw ``page``/``limit`` values into a :class:`PageRequest`.

    Missing or malformed values fall back to the defaults. Limits above the
    maximum are capped rather than rejected.
    """
    page_number = _to_int(page)
    if page_number is None or page_number < 1:
        page_number = DEFAULT_PAGE

    page_size = _to_int(limit)
    if page_size is None or page_size < 1:
        page_size = DEFAULT_LIMIT
    elif page_size > MAX_LIMIT:
        page_size = MAX_LIMIT

    return PageRequest(page=page_number, limit=page_size)


def build_meta(total_count: int, page: int, limit: int) -> PageMeta:
    total_pages = math.ceil(total_count / limit) if limit else 0
    return PageMeta(
        current_page=page,
        total_pages=total_pages,
        total_items=total_count,
        items_per_page=limit,
        has_next_page=page < total_pages,
        has_prev_page=page > 1,
    )
