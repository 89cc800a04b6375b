"""Pagination helpers."""

from typing import Any

DEFAULT_LIMIT = 20
MAX_LIMIT = 100


def paginate(page: int | None, limit: int | None, max_limit: int = MAX_LIMIT) -> tuple[int, int, int]:
    """Clamp page/limit; return (page, limit, skip). Missing or zero values fall back to defaults."""
    page = page if page and page > 0 else 1
    limit = limit if limit and limit > 0 else DEFAULT_LIMIT
    limit = min(limit, max_limit)
    return page, limit, (page - 1) * limit


def page_envelope(key: str, items: list[Any], page: int, limit: int, total: int) -> dict[str, Any]:
    return {key: items, "pagination": {"page": page, "limit": limit, "total": total}}
