"""Offset pagination over SQLAlchemy queries.

Clients send ``page`` (0-indexed), ``size`` and an optional ``sort`` of the form
``field`` or ``field,asc|desc``. Sort fields are resolved through a per-endpoint
whitelist so arbitrary column names never reach the query.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping, TypeVar

from fastapi import HTTPException, Query, status
from sqlalchemy.orm import Query as SAQuery

from . import schemas

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

T = TypeVar("T")


@dataclass
class PageParams:
    page: int = 0
    size: int = DEFAULT_PAGE_SIZE
    sort: str | None = None


def page_params(
    page: int = Query(0, ge=0, description="Page number, starting at 0"),
    size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    sort: str | None = Query(None, description="field[,asc|desc]"),
) -> PageParams:
    return PageParams(page=page, size=size, sort=sort)


def parse_sort(sort: str | None) -> tuple[str, bool] | None:
    """Split ``"field,dir"`` into ``(field, descending)``."""
    if not sort:
        return None
    field, _, direction = sort.partition(",")
    field = field.strip()
    direction = direction.strip().lower() or "asc"
    if not field or direction not in ("asc", "desc"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid sort parameter: {sort}",
        )
    return field, direction == "desc"


def apply_sort(
    query: SAQuery,
    params: PageParams,
    allowed_sorts: Mapping[str, Any],
    default_order: tuple = (),
) -> SAQuery:
    parsed = parse_sort(params.sort)
    if parsed is None:
        return query.order_by(*default_order) if default_order else query

    field, descending = parsed
    column = allowed_sorts.get(field)
    if column is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot sort by '{field}'",
        )
    return query.order_by(column.desc() if descending else column.asc())


def paginate(
    query: SAQuery,
    params: PageParams,
    serialize: Callable[[Any], T],
    allowed_sorts: Mapping[str, Any] | None = None,
    default_order: tuple = (),
) -> schemas.PagedResponse[T]:
    total = query.order_by(None).count()
    ordered = apply_sort(query, params, allowed_sorts or {}, default_order)
    rows = ordered.offset(params.page * params.size).limit(params.size).all()
    return schemas.PagedResponse(
        data=[serialize(row) for row in rows],
        pagination=schemas.PaginationInfo.build(params.page, params.size, total),
    )
