"""Audit logging decorator for mutating route handlers.

@audit_log('ROLE.CREATE', entity='Role', entity_id_key='id', meta_keys=['name'])
def create_role():
    ... return {'id': role.id, 'name': role.name}, 201

Parameters:
  action: audit action code (e.g. ROLE.CREATE)
  entity: entity label (Role, User, Session)
  entity_id_key: key of the returned JSON object holding the entity id
  entity_id_arg: view keyword argument to use when the payload has no id
  meta_keys: keys projected from the returned JSON into meta
  diff_keys + pre_fetch: record before/after values of the listed keys

Only successful (2xx) responses are audited. The entry is committed after the
view returns; a failing audit write is logged and never changes the response.
"""
from __future__ import annotations
from functools import wraps
from typing import Any, Callable, Dict, Iterable, Optional

from flask import current_app
from salespro.services.audit import add_audit
from salespro import get_db


def _split_return(rv: Any):
    """Return (payload, status) from a Flask view return value."""
    if isinstance(rv, tuple) and rv:
        status = rv[1] if len(rv) > 1 and isinstance(rv[1], int) else 200
        return rv[0], status
    return rv, 200


def audit_log(
    action: str,
    *,
    entity: Optional[str] = None,
    entity_id_key: Optional[str] = None,
    entity_id_arg: Optional[str] = None,
    meta_keys: Optional[Iterable[str]] = None,
    diff_keys: Optional[Iterable[str]] = None,
    pre_fetch: Optional[Callable[[tuple, dict], Dict[str, Any]]] = None,
):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            before = pre_fetch(args, kwargs) if (diff_keys and pre_fetch) else None
            rv = fn(*args, **kwargs)
            data, status = _split_return(rv)
            if status >= 300 or not isinstance(data, dict):
                return rv
            entity_id = None
            if entity_id_key and entity_id_key in data:
                entity_id = data.get(entity_id_key)
            elif entity_id_arg and entity_id_arg in kwargs:
                entity_id = kwargs.get(entity_id_arg)
            meta = {k: data.get(k) for k in (meta_keys or ()) if k in data}
            if diff_keys and before:
                changes = {
                    k: {'before': before.get(k), 'after': data.get(k)}
                    for k in diff_keys
                    if k in before and k in data and before.get(k) != data.get(k)
                }
                if changes:
                    meta['changes'] = changes
            session = get_db()
            try:
                add_audit(action, entity, entity_id, meta)
                session.commit()
            except Exception:
                session.rollback()
                current_app.logger.exception('audit.write_failed action=%s', action)
            return rv
        return wrapper
    return outer
