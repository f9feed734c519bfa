"""Response envelopes shared by list and mutation endpoints."""

from __future__ import annotations

import math
from typing import Any, Generic, List, TypeVar

from pydantic import BaseModel

from app.core.config import settings

T = TypeVar("T")


class Pagination(BaseModel):
    page: int
    page_size: int
    total: int
    total_pages: int

    @classmethod
    def build(cls, page: int, page_size: int, total: int) -> "Pagination":
        return cls(
            page=page,
            page_size=page_size,
            total=total,
            total_pages=math.ceil(total / page_size) if page_size else 0,
        )


class PageOut(BaseModel, Generic[T]):
    data: List[T]
    pagination: Pagination


class MessageOut(BaseModel, Generic[T]):
    message: str
    data: T


def clamp_page(page: Any, page_size: Any) -> tuple[int, int]:
    """Coerce paging query values: page >= 1, page size within [1, MAX_PAGE_SIZE]."""

    try:
        page_value = int(page)
    except (TypeError, ValueError):
        page_value = 1
    if page_value < 1:
        page_value = 1
    try:
        size_value = int(page_size)
    except (TypeError, ValueError):
        size_value = settings.DEFAULT_PAGE_SIZE
    if size_value < 1:
        size_value = settings.DEFAULT_PAGE_SIZE
    return page_value, min(size_value, settings.MAX_PAGE_SIZE)
