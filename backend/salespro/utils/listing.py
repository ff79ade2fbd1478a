from __future__ import annotations
from typing import Callable, List, Tuple
from flask import request, abort
from sqlalchemy import Select, func, select
from salespro import get_db

DEFAULT_LIMIT = 50
MAX_LIMIT = 200


def normalize_pagination(limit_raw, offset_raw) -> Tuple[int, int]:
    try:
        limit = int(limit_raw) if limit_raw is not None else DEFAULT_LIMIT
        offset = int(offset_raw) if offset_raw is not None else 0
    except ValueError:
        raise ValueError('limit/offset must be int')
    return max(1, min(limit, MAX_LIMIT)), max(0, offset)


def paginated_response(stmt: Select, serialize: Callable) -> dict:
    """Run ``stmt`` with limit/offset from the query string and build the list envelope."""
    try:
        limit, offset = normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    except ValueError as e:
        abort(400, description=str(e))
    session = get_db()
    total = session.execute(select(func.count()).select_from(stmt.order_by(None).subquery())).scalar_one()
    rows: List = session.execute(stmt.offset(offset).limit(limit)).scalars().all()
    return {
        'data': [serialize(r) for r in rows],
        'pagination': {
            'total': total,
            'limit': limit,
            'offset': offset,
            'returned': len(rows),
        },
    }
