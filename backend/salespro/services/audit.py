from __future__ import annotations
from typing import Any, Dict, Optional
from flask import g, has_request_context
from salespro import get_db
from salespro.models.audit import AuditLog
from salespro.services.policy import current_context


def add_audit(action: str, entity: Optional[str] = None, entity_id: Optional[Any] = None, meta: Optional[Dict[str, Any]] = None):
    """Add an audit entry to the current DB session (caller commits).

    The actor and tenant context come from the authenticated request; the
    actor's effective patterns are snapshotted so later role edits do not
    rewrite history.
    """
    session = get_db()
    actor = None
    company_id = None
    patterns = []
    if has_request_context():
        user = getattr(g, 'current_user', None)
        actor = user.id if user is not None else None
        ctx = getattr(g, 'authz_context', None)
        if ctx is None and user is not None:
            ctx = current_context()
        if ctx is not None:
            company_id = ctx.company_id
            patterns = list(ctx.patterns)
    log = AuditLog(
        actor_user_id=actor or 0,
        company_id=company_id,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        perms_snapshot={'patterns': patterns},
        meta=dict(meta or {}),
    )
    session.add(log)
    return log
