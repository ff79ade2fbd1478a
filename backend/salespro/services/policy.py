from __future__ import annotations
from typing import List, Optional, Set
from flask import g, abort
from sqlalchemy import select, func
from sqlalchemy.orm import aliased
from salespro.authz import (
    AuthorizationContext,
    Principal,
    RoleAssignment,
    RoleType,
    SessionContext,
    UserType,
    authorize,
    authorize_any,
    build_authorization_context,
)
from salespro.models.authz import Company, Role, User, UserCompany, UserRole, Session
from salespro.services.sessions import session_context
from salespro import get_db


def load_role_assignments(user_id: int, session=None) -> List[RoleAssignment]:
    """Currently valid role assignments of a user, read in one query.

    Soft-deleted roles, roles owned by a deactivated company and assignments
    scoped to a deactivated company are left out here; the resolver trusts its input.
    """
    session = session or get_db()
    role_company = aliased(Company)
    scope_company = aliased(Company)
    stmt = (
        select(UserRole, Role)
        .join(Role, Role.id == UserRole.role_id)
        .outerjoin(role_company, role_company.id == Role.company_id)
        .outerjoin(scope_company, scope_company.id == UserRole.company_id)
        .where(UserRole.user_id == user_id)
        .where(Role.deleted_at.is_(None))
        .where((Role.company_id.is_(None)) | (role_company.is_active.is_(True)))
        .where((UserRole.company_id.is_(None)) | (scope_company.is_active.is_(True)))
        .order_by(UserRole.id.asc())
    )
    return [RoleAssignment(role=role.to_grant(), company_id=ur.company_id) for ur, role in session.execute(stmt).all()]


def principal_for(user: User) -> Principal:
    return Principal(id=user.id, user_type=UserType(user.user_type))


def live_session_context(session_row: Optional[Session]) -> SessionContext:
    """Tenant fields of the session; a company deactivated since login counts as none."""
    ctx = session_context(session_row)
    ids = {i for i in (ctx.bound_company_id, ctx.active_company_id) if i is not None}
    if not ids:
        return ctx
    active = set(get_db().execute(
        select(Company.id).where(Company.id.in_(ids), Company.is_active.is_(True))
    ).scalars())
    return SessionContext(
        bound_company_id=ctx.bound_company_id if ctx.bound_company_id in active else None,
        active_company_id=ctx.active_company_id if ctx.active_company_id in active else None,
    )


def compute_authorization_context(user: User, session_row: Optional[Session]) -> AuthorizationContext:
    assignments = load_role_assignments(user.id)
    return build_authorization_context(principal_for(user), live_session_context(session_row), assignments)


def current_context() -> AuthorizationContext:
    """Authorization context of the current request, resolved once and kept on `g`."""
    ctx = getattr(g, 'authz_context', None)
    if ctx is None:
        user = getattr(g, 'current_user', None)
        if user is None:
            raise RuntimeError('current_context() used outside an authenticated request')
        ctx = compute_authorization_context(user, getattr(g, 'current_session', None))
        g.authz_context = ctx
    return ctx


def current_patterns():
    return current_context().patterns


def current_company_id() -> Optional[int]:
    return current_context().company_id


def has_permissions(*codes: str) -> bool:
    patterns = current_patterns()
    return all(authorize(c, patterns) for c in codes)


def has_any_permission(*codes: str) -> bool:
    return authorize_any(codes, current_patterns())


def require_company_context() -> int:
    company_id = current_company_id()
    if company_id is None:
        abort(400, description='An active company is required for this operation')
    return company_id


def get_company_scoped_or_404(model, object_id: int, company_id: Optional[int] = None, company_attr: str = 'company_id'):
    """Load a tenant-owned row, answering 404 when it belongs to another company.

    Rows of other tenants are indistinguishable from missing ones.
    """
    if company_id is None:
        company_id = current_company_id()
    if company_id is None:
        abort(404)
    column = getattr(model, company_attr)
    row = get_db().execute(
        select(model).where(model.id == object_id, column == company_id)
    ).scalar_one_or_none()
    if row is None:
        abort(404)
    return row


def validate_assignment_scope(role: Role, company_id: Optional[int]) -> Optional[int]:
    """Return the scope company to store for an assignment of ``role``.

    COMPANY roles must be assigned within their owning company; SYSTEM and
    PLATFORM roles are stored unscoped.
    """
    if role.role_type is RoleType.COMPANY:
        if company_id is None or role.company_id != company_id:
            raise ValueError(f'role {role.name} cannot be assigned outside its company')
        return company_id
    return None


def role_assignment_count(role_id: int) -> int:
    return get_db().execute(select(func.count(UserRole.id)).where(UserRole.role_id == role_id)).scalar_one()


def is_company_member(user: User, company_id: int) -> bool:
    if user.is_internal:
        return False
    if user.company_id == company_id:
        return True
    return get_db().execute(
        select(UserCompany).where(
            UserCompany.user_id == user.id,
            UserCompany.company_id == company_id,
            UserCompany.is_active.is_(True),
        )
    ).scalar_one_or_none() is not None


def member_company_ids(user: User) -> Set[int]:
    ids = {m.company_id for m in user.memberships if m.is_active}
    if user.company_id is not None:
        ids.add(user.company_id)
    return ids


def can_switch_companies(user: User) -> bool:
    session = get_db()
    if not user.is_internal:
        return len(member_company_ids(user)) > 1
    # internal users holding the switch permission may enter any active company
    platform_roles = [
        a.role for a in load_role_assignments(user.id, session) if a.role.type is RoleType.PLATFORM
    ]
    if not any(authorize('platform:switch_company', r.permissions) for r in platform_roles):
        return False
    total = session.execute(select(func.count(Company.id)).where(Company.is_active.is_(True))).scalar_one()
    return total > 0


def assign_default_roles(user: User, assigned_by: Optional[int] = None) -> List[UserRole]:
    """Attach every default SYSTEM role to a new company user (unscoped). The caller commits."""
    session = get_db()
    defaults = session.execute(
        select(Role).where(Role.is_default.is_(True), Role.type == RoleType.SYSTEM.value, Role.deleted_at.is_(None))
    ).scalars().all()
    existing = {ur.role_id for ur in session.execute(select(UserRole).where(UserRole.user_id == user.id)).scalars()}
    created = []
    for role in defaults:
        if role.id in existing:
            continue
        ur = UserRole(user_id=user.id, role_id=role.id, company_id=None, assigned_by=assigned_by)
        session.add(ur)
        created.append(ur)
    session.flush()
    return created
