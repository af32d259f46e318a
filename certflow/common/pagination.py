"""Paging and ordering for list endpoints."""

from __future__ import annotations

from typing import Any, Generic, TypeVar

from fastapi import Query
from pydantic import BaseModel
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")

DEFAULT_SORT = "created_at"


class PaginationParams:
    """Inject as a FastAPI dependency for any list endpoint."""

    def __init__(
        self,
        page: int = Query(1, ge=1),
        page_size: int = Query(20, ge=1, le=100),
        sort_by: str | None = Query(None, description="Sortable column; defaults to created_at"),
        sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    ):
        self.page = page
        self.page_size = page_size
        self.sort_by = sort_by
        self.sort_order = sort_order

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    def order_for(self, model: Any, sortable: tuple[str, ...]) -> list[Any]:
        # unknown columns fall back silently; id keeps pages stable on ties
        name = self.sort_by if self.sort_by in sortable else DEFAULT_SORT
        column = getattr(model, name)
        return [column.asc() if self.sort_order == "asc" else column.desc(), model.id]


class PaginatedResponse(BaseModel, Generic[T]):
    items: list[T]
    total: int
    page: int
    page_size: int
    total_pages: int

    @classmethod
    def build(cls, items: list[Any], total: int, params: PaginationParams, **extra: Any):
        return cls(
            items=items,
            total=total,
            page=params.page,
            page_size=params.page_size,
            total_pages=-(-total // params.page_size),
            **extra,
        )


async def paginate(
    db: AsyncSession,
    query: Select,
    params: PaginationParams,
    model: Any,
    sortable: tuple[str, ...] = (DEFAULT_SORT,),
) -> tuple[list[Any], int]:
    """Return one page of ``query`` plus the unpaged row count."""
    total = await db.scalar(select(func.count()).select_from(query.order_by(None).subquery()))
    page = query.order_by(*params.order_for(model, sortable)).offset(params.offset).limit(params.page_size)
    items = list((await db.scalars(page)).all())
    return items, total or 0
