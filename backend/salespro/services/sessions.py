"""Server-side sessions referenced by the `sid` claim of access tokens.

A session is created at login, changes only when the user switches company, and
is removed at logout or ignored once expired.
"""
from __future__ import annotations
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from flask import current_app
from sqlalchemy import select, delete

from salespro import get_db
from salespro.authz.context import SessionContext
from salespro.models.authz import Session, User


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(dt: datetime) -> datetime:
    # sqlite hands back naive datetimes
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def create_session(user: User, company_id: Optional[int] = None) -> Session:
    session = get_db()
    ttl = timedelta(hours=current_app.config.get('SESSION_TTL_HOURS', 12))
    row = Session(sid=str(uuid.uuid4()), user_id=user.id, expires_at=_utcnow() + ttl)
    if user.is_internal:
        row.active_company_id = None
    else:
        row.company_id = company_id if company_id is not None else user.company_id
    session.add(row)
    session.commit()
    return row


def load_session(sid: Optional[str]) -> Optional[Session]:
    if not sid:
        return None
    row = get_db().execute(select(Session).where(Session.sid == sid)).scalar_one_or_none()
    if row is None:
        return None
    if _aware(row.expires_at) <= _utcnow():
        return None
    return row


def switch_company(row: Session, company_id: Optional[int]) -> Session:
    """Move the session into another tenant context (None leaves it, internal users only)."""
    session = get_db()
    if row.user.is_internal:
        row.active_company_id = company_id
    else:
        row.company_id = company_id
    session.commit()
    return row


def destroy_session(sid: str) -> None:
    session = get_db()
    session.execute(delete(Session).where(Session.sid == sid))
    session.commit()


def session_context(row: Optional[Session]) -> SessionContext:
    if row is None:
        return SessionContext()
    return SessionContext(bound_company_id=row.company_id, active_company_id=row.active_company_id)


__all__ = ['create_session', 'load_session', 'switch_company', 'destroy_session', 'session_context']
