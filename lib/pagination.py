"""
ページネーション
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, TypeVar

from lib.errors import ValidationError

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


@dataclass
class PaginationParams:
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE

    def __post_init__(self):
        if self.page < 1:
            raise ValidationError("page must be 1 or greater")
        if not 1 <= self.page_size <= MAX_PAGE_SIZE:
            raise ValidationError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


@dataclass
class PaginatedResult(Generic[T]):
    data: List[T] = field(default_factory=list)
    total_count: int = 0
    current_page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size) if self.page_size else 0

    @property
    def has_next_page(self) -> bool:
        return self.current_page < self.total_pages

    @property
    def has_previous_page(self) -> bool:
        return self.current_page > 1

    @classmethod
    def build(cls, data: List[T], total_count: int, params: PaginationParams) -> "PaginatedResult[T]":
        return cls(
            data=data,
            total_count=total_count,
            current_page=params.page,
            page_size=params.page_size,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": [d.to_dict() if hasattr(d, "to_dict") else d for d in self.data],
            "total_count": self.total_count,
            "total_pages": self.total_pages,
            "current_page": self.current_page,
            "page_size": self.page_size,
            "has_next_page": self.has_next_page,
            "has_previous_page": self.has_previous_page,
        }
