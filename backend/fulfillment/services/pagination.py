# Overview: Page/limit handling shared by the list queries.

from __future__ import annotations

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 200


def paginate(query, *, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> dict:
    """
    Apply page/limit to a query and return items with paging metadata.

    Out-of-range values are clamped rather than rejected.
    """
    page = max(1, int(page or 1))
    limit = max(1, min(int(limit or DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE))

    total = query.order_by(None).count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    return {
        "items": items,
        "page": page,
        "limit": limit,
        "total": total,
        "pages": (total + limit - 1) // limit,
    }
