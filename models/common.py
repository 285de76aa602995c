"""Shared value types and schemas used by the client and project models."""

import enum
import math
from datetime import datetime, UTC

from pydantic import BaseModel, Field

# Deepest reachable page; larger offsets overflow the database driver
MAX_PAGE = 100_000


def utcnow() -> datetime:
    return datetime.now(UTC)


class Currency(str, enum.Enum):
    """Supported ISO currency codes."""

    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    CAD = "CAD"
    AUD = "AUD"
    JPY = "JPY"
    INR = "INR"
    CNY = "CNY"


class SortOrder(str, enum.Enum):
    ASC = "asc"
    DESC = "desc"


def normalize_email(value):
    """Trim and lower-case an e-mail; blank values are treated as absent."""
    if not isinstance(value, str):
        return value
    value = value.strip()
    return value.lower() or None


class Pagination(BaseModel):
    """Pagination block returned by every list endpoint (1-indexed)."""

    current_page: int
    total_pages: int
    total_count: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, *, page: int, limit: int, total_count: int) -> "Pagination":
        total_pages = math.ceil(total_count / limit) if limit else 0
        return cls(
            current_page=page,
            total_pages=total_pages,
            total_count=total_count,
            has_next=page < total_pages,
            has_prev=page > 1,
        )


class PageParams(BaseModel):
    """Resolved paging and sorting parameters for a list query."""

    page: int = Field(1, ge=1, le=MAX_PAGE)
    limit: int = Field(10, ge=1)
    sort_by: str = "created_at"
    sort_order: SortOrder = SortOrder.DESC

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit
