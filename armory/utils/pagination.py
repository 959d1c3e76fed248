import math
from typing import Optional, Tuple

from sqlalchemy.orm import Query

from armory.config import settings


def clamp_limit(limit: Optional[int]) -> int:
    if not limit or limit < 1:
        return settings.default_page_size
    return min(limit, settings.max_page_size)


def paginate(query: Query, page: int = 1, limit: Optional[int] = None) -> Tuple[list, dict]:
    """Apply offset/limit to an ordered query; returns (rows, pagination block)."""
    page = max(page or 1, 1)
    limit = clamp_limit(limit)
    total = query.order_by(None).count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return rows, {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if total else 0,
    }


def apply_sort(query: Query, columns: dict, sort_by: Optional[str], sort_order: str, default: str):
    """Order by a whitelisted column name; unknown names fall back to ``default``."""
    column = columns.get(sort_by) if sort_by else None
    if column is None:
        column = columns[default]
    if (sort_order or "desc").lower() == "asc":
        return query.order_by(column.asc())
    return query.order_by(column.desc())
