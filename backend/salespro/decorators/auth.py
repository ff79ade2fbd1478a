from functools import wraps
from typing import Sequence
from flask import abort, current_app, g
from flask_jwt_extended import verify_jwt_in_request, get_jwt, get_jwt_identity
from werkzeug.exceptions import Forbidden
from sqlalchemy import select
from salespro import get_db
from salespro.models.authz import Company, User
from salespro.services.sessions import load_session
from salespro.services.policy import has_permissions, has_any_permission


class PermissionDenied(Forbidden):
    """403 naming the permission(s) the operation needed."""

    def __init__(self, required: Sequence[str], description: str = 'Missing required permission'):
        super().__init__(description=description)
        self.required_permissions = tuple(required)


def authenticate():
    """Resolve bearer token -> live session -> active user, storing both on `g`."""
    if getattr(g, 'current_user', None) is not None:
        return g.current_user
    verify_jwt_in_request()
    claims = get_jwt()
    row = load_session(claims.get('sid'))
    if row is None:
        current_app.logger.info('auth.session_invalid sid=%s', claims.get('sid'))
        abort(401, description='Session expired, please login again')
    try:
        user_id = int(get_jwt_identity())
    except (TypeError, ValueError):
        abort(401, description='Invalid token')
    if row.user_id != user_id:
        abort(401, description='Invalid token')
    user = get_db().execute(select(User).where(User.id == user_id)).scalar_one_or_none()
    if user is None:
        abort(401, description='User not found')
    if not user.is_active:
        abort(401, description='Account is deactivated')
    if not user.is_internal and row.company_id is not None:
        company = get_db().get(Company, row.company_id)
        if company is None or not company.is_active:
            current_app.logger.info('auth.company_inactive user_id=%s company_id=%s', user.id, row.company_id)
            abort(401, description='Company is deactivated')
    g.current_user = user
    g.current_session = row
    return user


def require_auth(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        authenticate()
        return fn(*args, **kwargs)
    return wrapper


def require_internal_user(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        user = authenticate()
        if not user.is_internal:
            abort(403, description='Internal user access required')
        return fn(*args, **kwargs)
    return wrapper


def require_permissions(*codes: str):
    """All of ``codes`` must be granted in the current tenant context."""
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = authenticate()
            if not has_permissions(*codes):
                current_app.logger.info('authz.denied user_id=%s required=%s', user.id, ','.join(codes))
                raise PermissionDenied(codes)
            return fn(*args, **kwargs)
        return wrapper
    return outer


def require_any_permission(*codes: str):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = authenticate()
            if not has_any_permission(*codes):
                current_app.logger.info('authz.denied user_id=%s required_any=%s', user.id, ','.join(codes))
                raise PermissionDenied(codes, description='Missing required permissions (need at least one)')
            return fn(*args, **kwargs)
        return wrapper
    return outer


# single-permission spelling used by most routes
require_permission = require_permissions
