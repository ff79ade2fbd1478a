from flask import Blueprint, request, abort, g, current_app
from sqlalchemy import select, delete
from salespro import get_db
from salespro.authz import RoleType, UserType
from salespro.models.authz import Company, Role, User, UserRole
from salespro.models.audit import AuditLog
from salespro.services.policy import role_assignment_count
from salespro.services.sessions import switch_company
from salespro.utils.listing import paginated_response
from salespro.utils.validation import validate_display_name, validate_permission_patterns, validate_role_name
from salespro.decorators.auth import require_internal_user, require_permission
from salespro.decorators.audit import audit_log

platform_bp = Blueprint('platform', __name__)


def _company_json(c: Company):
    return {'id': c.id, 'name': c.name, 'is_active': c.is_active}


def _platform_role_json(r: Role):
    return {
        'id': r.id,
        'name': r.name,
        'display_name': r.display_name,
        'description': r.description,
        'type': r.type,
        'permissions': list(r.permissions or []),
        'company_permissions': list(r.company_permissions or []),
    }


def _platform_role_or_404(role_id: int) -> Role:
    role = get_db().execute(
        select(Role).where(Role.id == role_id, Role.type == RoleType.PLATFORM.value, Role.deleted_at.is_(None))
    ).scalar_one_or_none()
    if role is None:
        abort(404)
    return role


def _platform_permissions(value):
    patterns = validate_permission_patterns(value, 'permissions', platform=True)
    if not patterns:
        abort(400, description='permissions must not be empty')
    return patterns


@platform_bp.get('/companies')
@require_internal_user
@require_permission('platform:view_companies')
def list_companies():
    stmt = select(Company)
    active = request.args.get('is_active')
    if active is not None:
        stmt = stmt.where(Company.is_active.is_(active.lower() in ('1', 'true', 'yes')))
    search = request.args.get('search')
    if search:
        stmt = stmt.where(Company.name.ilike(f'%{search}%'))
    return paginated_response(stmt.order_by(Company.name.asc(), Company.id.asc()), _company_json)


@platform_bp.post('/switch-company')
@require_internal_user
@require_permission('platform:switch_company')
@audit_log('COMPANY.SWITCH', entity='Company', entity_id_key='company_id')
def platform_switch_company():
    """Enter a company's context, or leave it with ``company_id: null``."""
    data = request.json or {}
    if 'company_id' not in data:
        abort(400, description='company_id required (null exits the company context)')
    company_id = data.get('company_id')
    if company_id is None:
        switch_company(g.current_session, None)
        current_app.logger.info('platform.switch user_id=%s company_id=None', g.current_user.id)
        return {'company_id': None, 'name': None}
    if isinstance(company_id, bool) or not isinstance(company_id, int):
        abort(400, description='company_id must be int or null')
    company = get_db().get(Company, company_id)
    if company is None:
        abort(404)
    if not company.is_active:
        abort(400, description='Cannot switch to inactive company')
    switch_company(g.current_session, company.id)
    current_app.logger.info('platform.switch user_id=%s company_id=%s', g.current_user.id, company.id)
    return {'company_id': company.id, 'name': company.name}


@platform_bp.get('/roles')
@require_internal_user
@require_permission('platform:admin')
def list_platform_roles():
    stmt = select(Role).where(Role.type == RoleType.PLATFORM.value, Role.deleted_at.is_(None)).order_by(Role.id.asc())
    return paginated_response(stmt, _platform_role_json)


@platform_bp.post('/roles')
@require_internal_user
@require_permission('platform:admin')
@audit_log('PLATFORM.ROLE.CREATE', entity='Role', entity_id_key='id', meta_keys=['name', 'permissions', 'company_permissions'])
def create_platform_role():
    data = request.json or {}
    name = validate_role_name(data.get('name'))
    display_name = validate_display_name(data.get('display_name') or name)
    permissions = _platform_permissions(data.get('permissions'))
    company_perms = validate_permission_patterns(data.get('company_permissions', []), 'company_permissions', platform=False)
    session = get_db()
    # SYSTEM and PLATFORM roles share the unowned name space
    clash = session.execute(
        select(Role).where(Role.name == name, Role.company_id.is_(None), Role.deleted_at.is_(None))
    ).scalar_one_or_none()
    if clash:
        abort(400, description='role exists')
    role = Role(
        name=name,
        display_name=display_name,
        description=data.get('description'),
        type=RoleType.PLATFORM.value,
        permissions=permissions,
        company_permissions=company_perms,
        is_default=False,
        company_id=None,
    )
    session.add(role)
    session.commit()
    return _platform_role_json(role), 201


def _prefetch_platform_role(role_id):
    role = get_db().get(Role, role_id)
    if role is None:
        return {}
    return {
        'display_name': role.display_name,
        'permissions': list(role.permissions or []),
        'company_permissions': list(role.company_permissions or []),
    }


@platform_bp.patch('/roles/<int:role_id>')
@require_internal_user
@require_permission('platform:admin')
@audit_log(
    'PLATFORM.ROLE.UPDATE',
    entity='Role',
    entity_id_key='id',
    diff_keys=['display_name', 'permissions', 'company_permissions'],
    pre_fetch=lambda a, kw: _prefetch_platform_role(kw.get('role_id')),
)
def update_platform_role(role_id: int):
    role = _platform_role_or_404(role_id)
    data = request.json or {}
    if 'display_name' in data:
        role.display_name = validate_display_name(data['display_name'])
    if 'description' in data:
        role.description = data['description']
    if 'permissions' in data:
        role.permissions = _platform_permissions(data['permissions'])
    if 'company_permissions' in data:
        role.company_permissions = validate_permission_patterns(
            data['company_permissions'] or [], 'company_permissions', platform=False
        )
    get_db().commit()
    return _platform_role_json(role)


@platform_bp.delete('/roles/<int:role_id>')
@require_internal_user
@require_permission('platform:admin')
@audit_log('PLATFORM.ROLE.DELETE', entity='Role', entity_id_arg='role_id', meta_keys=['name'])
def delete_platform_role(role_id: int):
    role = _platform_role_or_404(role_id)
    in_use = role_assignment_count(role.id)
    if in_use:
        abort(409, description=f'Role is assigned to {in_use} user(s)')
    session = get_db()
    name = role.name
    session.delete(role)
    session.commit()
    return {'status': 'deleted', 'name': name}


@platform_bp.get('/audit/logs')
@require_internal_user
@require_permission('platform:view_audit_logs')
def list_audit_logs():
    stmt = select(AuditLog)
    action = request.args.get('action')
    if action:
        stmt = stmt.where(AuditLog.action == action)
    for arg, column in (('company_id', AuditLog.company_id), ('actor_user_id', AuditLog.actor_user_id)):
        raw = request.args.get(arg)
        if raw is None:
            continue
        try:
            stmt = stmt.where(column == int(raw))
        except ValueError:
            abort(400, description=f'{arg} must be int')
    stmt = stmt.order_by(AuditLog.id.desc())
    return paginated_response(stmt, lambda a: {
        'id': a.id,
        'actor_user_id': a.actor_user_id,
        'company_id': a.company_id,
        'action': a.action,
        'entity': a.entity,
        'entity_id': a.entity_id,
        'perms_snapshot': a.perms_snapshot,
        'meta': a.meta,
        'created_at': a.created_at.isoformat() if a.created_at else None,
    })


@platform_bp.get('/active-company')
@require_internal_user
def get_active_company():
    company_id = g.current_session.active_company_id
    company = get_db().get(Company, company_id) if company_id is not None else None
    return {'active_company': _company_json(company) if company else None}


@platform_bp.delete('/active-company')
@require_internal_user
@audit_log('COMPANY.SWITCH', entity='Company', meta_keys=['company_id'])
def exit_active_company():
    """Leave the company context.

    Only internal-user status is required: inside a company the platform role's
    own permissions no longer apply, so switch_company may not be held.
    """
    switch_company(g.current_session, None)
    current_app.logger.info('platform.exit user_id=%s', g.current_user.id)
    return {'company_id': None, 'active_company': None}


def _company_name(value):
    if not isinstance(value, str) or not value.strip():
        abort(400, description='name required')
    name = value.strip()
    if len(name) > 128:
        abort(400, description='name must be 128 characters or less')
    return name


@platform_bp.post('/companies')
@require_internal_user
@require_permission('platform:create_company')
@audit_log('COMPANY.CREATE', entity='Company', entity_id_key='id', meta_keys=['name'])
def create_company():
    data = request.json or {}
    name = _company_name(data.get('name'))
    session = get_db()
    if session.execute(select(Company.id).where(Company.name == name)).first() is not None:
        abort(409, description='Company name already in use')
    company = Company(name=name, is_active=True)
    session.add(company)
    session.commit()
    return _company_json(company), 201


@platform_bp.patch('/companies/<int:company_id>')
@require_internal_user
@require_permission('platform:update_company')
@audit_log(
    'COMPANY.UPDATE',
    entity='Company',
    entity_id_key='id',
    diff_keys=['name', 'is_active'],
    pre_fetch=lambda a, kw: _prefetch_company(kw.get('company_id')),
)
def update_company(company_id: int):
    """Rename or (de)activate a company. Live sessions lose the company context once it is inactive."""
    session = get_db()
    company = session.get(Company, company_id)
    if company is None:
        abort(404)
    data = request.json or {}
    if 'name' in data:
        name = _company_name(data['name'])
        taken = session.execute(select(Company.id).where(Company.name == name, Company.id != company.id)).first()
        if taken is not None:
            abort(409, description='Company name already in use')
        company.name = name
    if 'is_active' in data:
        if not isinstance(data['is_active'], bool):
            abort(400, description='is_active must be bool')
        company.is_active = data['is_active']
    session.commit()
    current_app.logger.info('platform.company_update company_id=%s is_active=%s', company.id, company.is_active)
    return _company_json(company)


def _prefetch_company(company_id):
    company = get_db().get(Company, company_id)
    return _company_json(company) if company else {}


def _platform_role_for_assignment(role_id):
    if isinstance(role_id, bool) or not isinstance(role_id, int):
        abort(400, description='platform_role_id must be int')
    role = get_db().execute(
        select(Role).where(Role.id == role_id, Role.type == RoleType.PLATFORM.value, Role.deleted_at.is_(None))
    ).scalar_one_or_none()
    if role is None:
        abort(400, description='Invalid platform role')
    return role


def _platform_role_of(user: User):
    return get_db().execute(
        select(Role)
        .join(UserRole, UserRole.role_id == Role.id)
        .where(UserRole.user_id == user.id, Role.type == RoleType.PLATFORM.value)
        .order_by(UserRole.id.asc())
    ).scalars().first()


def _internal_user_json(u: User):
    role = _platform_role_of(u)
    return {
        'id': u.id,
        'name': u.name,
        'email': u.email,
        'is_active': u.is_active,
        'platform_role': {'id': role.id, 'name': role.name, 'display_name': role.display_name} if role else None,
    }


def _set_platform_role(session, user: User, role: Role):
    # an internal user holds exactly one platform role
    platform_ids = select(Role.id).where(Role.type == RoleType.PLATFORM.value)
    session.execute(delete(UserRole).where(UserRole.user_id == user.id, UserRole.role_id.in_(platform_ids)))
    session.add(UserRole(user_id=user.id, role_id=role.id, company_id=None, assigned_by=g.current_user.id))


@platform_bp.get('/internal-users')
@require_internal_user
@require_permission('platform:manage_internal_users')
def list_internal_users():
    stmt = select(User).where(User.user_type == UserType.INTERNAL.value).order_by(User.id.asc())
    return paginated_response(stmt, _internal_user_json)


@platform_bp.post('/internal-users')
@require_internal_user
@require_permission('platform:manage_internal_users')
@audit_log('INTERNAL_USER.CREATE', entity='User', entity_id_key='id', meta_keys=['email'])
def create_internal_user():
    data = request.json or {}
    email = data.get('email')
    password = data.get('password')
    if not isinstance(email, str) or '@' not in email:
        abort(400, description='valid email required')
    if not isinstance(password, str) or len(password) < 8:
        abort(400, description='password must be at least 8 characters')
    email = email.strip().lower()
    role = _platform_role_for_assignment(data.get('platform_role_id'))
    session = get_db()
    if session.execute(select(User.id).where(User.email == email)).first() is not None:
        abort(409, description='Email already in use')
    user = User(
        name=data.get('name') or email.split('@')[0],
        email=email,
        user_type=UserType.INTERNAL.value,
        company_id=None,
        is_active=True,
    )
    user.set_password(password)
    session.add(user)
    session.flush()
    _set_platform_role(session, user, role)
    session.commit()
    current_app.logger.info('platform.internal_user_create user_id=%s role=%s', user.id, role.name)
    return _internal_user_json(user), 201


@platform_bp.patch('/internal-users/<int:user_id>')
@require_internal_user
@require_permission('platform:manage_internal_users')
@audit_log('INTERNAL_USER.UPDATE', entity='User', entity_id_key='id', meta_keys=['is_active', 'platform_role'])
def update_internal_user(user_id: int):
    session = get_db()
    user = session.execute(
        select(User).where(User.id == user_id, User.user_type == UserType.INTERNAL.value)
    ).scalar_one_or_none()
    if user is None:
        abort(404)
    data = request.json or {}
    if 'name' in data:
        if not isinstance(data['name'], str) or not data['name'].strip():
            abort(400, description='name must be a non-empty string')
        user.name = data['name'].strip()
    if 'is_active' in data:
        if not isinstance(data['is_active'], bool):
            abort(400, description='is_active must be bool')
        if user.id == g.current_user.id and not data['is_active']:
            abort(400, description='You cannot deactivate your own account')
        user.is_active = data['is_active']
    if data.get('platform_role_id') is not None:
        _set_platform_role(session, user, _platform_role_for_assignment(data['platform_role_id']))
    session.commit()
    return _internal_user_json(user)


@platform_bp.put('/users/<int:user_id>/system-roles')
@require_internal_user
@require_permission('platform:admin')
@audit_log('USER.SYSTEM_ROLES.SET', entity='User', entity_id_key='user_id', meta_keys=['role_ids'])
def set_system_roles(user_id: int):
    """Replace a company user's SYSTEM role assignments.

    SYSTEM roles apply in every company the user belongs to, which is why only
    platform administrators may change them.
    """
    session = get_db()
    user = session.get(User, user_id)
    if user is None or user.is_internal:
        abort(404)
    data = request.json or {}
    raw_ids = data.get('role_ids')
    if not isinstance(raw_ids, list) or any(isinstance(i, bool) or not isinstance(i, int) for i in raw_ids):
        abort(400, description='role_ids must be list[int]')
    role_ids = set(raw_ids)
    roles = session.execute(
        select(Role).where(Role.id.in_(role_ids), Role.type == RoleType.SYSTEM.value, Role.deleted_at.is_(None))
    ).scalars().all() if role_ids else []
    missing = role_ids - {r.id for r in roles}
    if missing:
        abort(400, description=f'Unknown system role ids: {sorted(missing)}')
    system_ids = select(Role.id).where(Role.type == RoleType.SYSTEM.value)
    session.execute(delete(UserRole).where(UserRole.user_id == user.id, UserRole.role_id.in_(system_ids)))
    for role in roles:
        session.add(UserRole(user_id=user.id, role_id=role.id, company_id=None, assigned_by=g.current_user.id))
    session.commit()
    return {'user_id': user.id, 'role_ids': sorted(role_ids)}
