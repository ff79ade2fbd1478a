from flask import Blueprint, request, abort, g
from sqlalchemy import select, delete, or_
from salespro import get_db
from salespro.authz import RoleType
from salespro.constants.permissions import expand_patterns
from salespro.models.authz import Role, User, UserRole
from salespro.services.policy import (
    current_company_id,
    get_company_scoped_or_404,
    is_company_member,
    require_company_context,
    role_assignment_count,
    validate_assignment_scope,
)
from salespro.utils.listing import paginated_response
from salespro.utils.validation import validate_display_name, validate_permission_patterns, validate_role_name
from salespro.decorators.auth import require_any_permission, require_permission
from salespro.decorators.audit import audit_log

roles_bp = Blueprint('roles', __name__)


def _role_json(r: Role, expanded: bool = False):
    out = {
        'id': r.id,
        'name': r.name,
        'display_name': r.display_name,
        'description': r.description,
        'type': r.type,
        'is_default': r.is_default,
        'permissions': list(r.permissions or []),
        'company_id': r.company_id,
    }
    if expanded:
        out['expanded_permissions'] = expand_patterns(r.permissions or [])
    return out


def _visible_roles_stmt(company_id):
    """SYSTEM roles plus the roles owned by the given company."""
    return select(Role).where(
        Role.deleted_at.is_(None),
        or_(Role.type == RoleType.SYSTEM.value, (Role.type == RoleType.COMPANY.value) & (Role.company_id == company_id)),
    )


def _visible_role_or_404(role_id: int) -> Role:
    company_id = current_company_id()
    role = get_db().execute(_visible_roles_stmt(company_id).where(Role.id == role_id)).scalar_one_or_none()
    if role is None:
        abort(404)
    return role


def _editable_role_or_404(role_id: int) -> Role:
    company_id = require_company_context()
    role = get_company_scoped_or_404(Role, role_id, company_id)
    if role.deleted_at is not None or role.role_type is not RoleType.COMPANY:
        abort(404)
    return role


@roles_bp.get('')
@require_permission('role:read')
def list_roles():
    company_id = require_company_context()
    stmt = _visible_roles_stmt(company_id).order_by(Role.id.asc())
    return paginated_response(stmt, _role_json)


@roles_bp.get('/<int:role_id>')
@require_permission('role:read')
def get_role(role_id: int):
    require_company_context()
    return _role_json(_visible_role_or_404(role_id), expanded=True)


def _name_taken(session, name: str, company_id: int) -> bool:
    """Company role names may not shadow another role of the company or a SYSTEM role."""
    return session.execute(
        select(Role.id).where(
            Role.name == name,
            Role.deleted_at.is_(None),
            or_(Role.company_id == company_id, Role.type == RoleType.SYSTEM.value),
        )
    ).first() is not None


@roles_bp.post('')
@require_permission('role:create')
@audit_log('ROLE.CREATE', entity='Role', entity_id_key='id', meta_keys=['name', 'permissions'])
def create_role():
    company_id = require_company_context()
    data = request.json or {}
    name = validate_role_name(data.get('name'))
    display_name = validate_display_name(data.get('display_name') or name)
    permissions = validate_permission_patterns(data.get('permissions', []), platform=False)
    session = get_db()
    if _name_taken(session, name, company_id):
        abort(400, description='role exists')
    role = Role(
        name=name,
        display_name=display_name,
        description=data.get('description'),
        type=RoleType.COMPANY.value,
        permissions=permissions,
        company_id=company_id,
        is_default=False,
    )
    session.add(role)
    session.commit()
    return _role_json(role), 201


def _prefetch_role(role_id):
    role = get_db().get(Role, role_id)
    if role is None:
        return {}
    return {'display_name': role.display_name, 'description': role.description, 'permissions': list(role.permissions or [])}


@roles_bp.patch('/<int:role_id>')
@require_permission('role:update')
@audit_log(
    'ROLE.UPDATE',
    entity='Role',
    entity_id_key='id',
    diff_keys=['display_name', 'description', 'permissions'],
    pre_fetch=lambda a, kw: _prefetch_role(kw.get('role_id')),
)
def update_role(role_id: int):
    require_company_context()
    session = get_db()
    role = session.get(Role, role_id)
    if role is not None and role.role_type is RoleType.SYSTEM and role.deleted_at is None:
        abort(403, description='System roles cannot be modified')
    role = _editable_role_or_404(role_id)
    data = request.json or {}
    if 'display_name' in data:
        role.display_name = validate_display_name(data['display_name'])
    if 'description' in data:
        desc = data['description']
        if desc is not None and (not isinstance(desc, str) or len(desc) > 500):
            abort(400, description='description must be a string of 500 characters or less')
        role.description = desc
    if 'permissions' in data:
        role.permissions = validate_permission_patterns(data['permissions'], platform=False)
    session.commit()
    return _role_json(role)


@roles_bp.delete('/<int:role_id>')
@require_permission('role:delete')
@audit_log('ROLE.DELETE', entity='Role', entity_id_arg='role_id', meta_keys=['name'])
def delete_role(role_id: int):
    role = _editable_role_or_404(role_id)
    in_use = role_assignment_count(role.id)
    if in_use:
        abort(409, description=f'Role is assigned to {in_use} user(s)')
    session = get_db()
    name = role.name
    session.delete(role)
    session.commit()
    return {'status': 'deleted', 'name': name}


@roles_bp.post('/<int:role_id>/clone')
@require_permission('role:create')
@audit_log('ROLE.CLONE', entity='Role', entity_id_key='id', meta_keys=['name', 'cloned_from'])
def clone_role(role_id: int):
    """Copy a visible role's permissions into a new COMPANY role of the current company."""
    company_id = require_company_context()
    source = _visible_role_or_404(role_id)
    data = request.json or {}
    name = validate_role_name(data.get('name'))
    display_name = validate_display_name(data.get('display_name') or name)
    session = get_db()
    if _name_taken(session, name, company_id):
        abort(409, description=f'A role named {name} already exists')
    description = data.get('description', source.description)
    if description is not None and (not isinstance(description, str) or len(description) > 500):
        abort(400, description='description must be a string of 500 characters or less')
    role = Role(
        name=name,
        display_name=display_name,
        description=description,
        type=RoleType.COMPANY.value,
        permissions=list(source.permissions or []),
        company_id=company_id,
        is_default=False,
    )
    session.add(role)
    session.commit()
    out = _role_json(role)
    out['cloned_from'] = source.id
    return out, 201


def _int_field(data, key):
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        abort(400, description=f'{key} must be int')
    return value


def _member_or_404(user_id: int, company_id: int) -> User:
    user = get_db().get(User, user_id)
    if user is None or not is_company_member(user, company_id):
        abort(404)
    return user


def _assignable_roles(role_ids, company_id):
    """COMPANY roles of ``company_id`` with the given ids.

    SYSTEM roles apply in every company a user belongs to, so a tenant
    administrator may not hand them out.
    """
    if not role_ids:
        return []
    roles = get_db().execute(_visible_roles_stmt(company_id).where(Role.id.in_(role_ids))).scalars().all()
    system = sorted(r.id for r in roles if r.role_type is RoleType.SYSTEM)
    if system:
        abort(400, description=f'System roles are assigned by platform administrators: {system}')
    missing = set(role_ids) - {r.id for r in roles}
    if missing:
        abort(400, description=f'Unknown role ids: {sorted(missing)}')
    return roles


@roles_bp.get('/users/<int:user_id>')
@require_any_permission('role:read', 'role:assign')
def get_user_roles(user_id: int):
    company_id = require_company_context()
    user = _member_or_404(user_id, company_id)
    rows = get_db().execute(
        select(Role)
        .join(UserRole, UserRole.role_id == Role.id)
        .where(UserRole.user_id == user.id, Role.deleted_at.is_(None))
        .where(or_(UserRole.company_id == company_id, Role.type == RoleType.SYSTEM.value))
        .order_by(Role.id.asc())
    ).scalars().all()
    return {'user_id': user.id, 'roles': [_role_json(r) for r in rows]}


@roles_bp.put('/users/<int:user_id>')
@require_permission('role:assign')
@audit_log('USER.ROLES.SET', entity='User', entity_id_key='user_id', meta_keys=['role_ids'])
def set_user_roles(user_id: int):
    """Replace a member's COMPANY role assignments within the current company."""
    company_id = require_company_context()
    user = _member_or_404(user_id, company_id)
    data = request.json or {}
    raw_ids = data.get('role_ids')
    if not isinstance(raw_ids, list) or any(isinstance(i, bool) or not isinstance(i, int) for i in raw_ids):
        abort(400, description='role_ids must be list[int]')
    role_ids = set(raw_ids)
    roles = _assignable_roles(role_ids, company_id)
    session = get_db()
    # assignments scoped to other companies and SYSTEM / PLATFORM ones stay untouched
    session.execute(delete(UserRole).where(UserRole.user_id == user.id, UserRole.company_id == company_id))
    for role in roles:
        scope = validate_assignment_scope(role, company_id)
        session.add(UserRole(user_id=user.id, role_id=role.id, company_id=scope, assigned_by=g.current_user.id))
    session.commit()
    return {'user_id': user.id, 'role_ids': sorted(role_ids)}


def _existing_assignment(session, user_id, role_id, company_id):
    return session.execute(
        select(UserRole).where(
            UserRole.user_id == user_id, UserRole.role_id == role_id, UserRole.company_id == company_id
        )
    ).scalar_one_or_none()


@roles_bp.post('/assign')
@require_permission('role:assign')
@audit_log('USER.ROLE.ASSIGN', entity='User', entity_id_key='user_id', meta_keys=['role_id'])
def assign_role():
    company_id = require_company_context()
    data = request.json or {}
    user_id = _int_field(data, 'user_id')
    role_id = _int_field(data, 'role_id')
    role = _visible_role_or_404(role_id)
    if role.role_type is RoleType.SYSTEM:
        abort(400, description='System roles are assigned by platform administrators')
    user = _member_or_404(user_id, company_id)
    session = get_db()
    if _existing_assignment(session, user.id, role.id, company_id) is not None:
        abort(409, description='User already has this role')
    scope = validate_assignment_scope(role, company_id)
    session.add(UserRole(user_id=user.id, role_id=role.id, company_id=scope, assigned_by=g.current_user.id))
    session.commit()
    return {'user_id': user.id, 'role_id': role.id, 'role_name': role.name}


@roles_bp.post('/revoke')
@require_permission('role:assign')
@audit_log('USER.ROLE.REVOKE', entity='User', entity_id_key='user_id', meta_keys=['role_id'])
def revoke_role():
    company_id = require_company_context()
    data = request.json or {}
    user_id = _int_field(data, 'user_id')
    role_id = _int_field(data, 'role_id')
    session = get_db()
    # only assignments scoped to this company are reachable from here
    ur = _existing_assignment(session, user_id, role_id, company_id)
    if ur is None:
        abort(404, description='Role assignment not found')
    session.delete(ur)
    session.commit()
    return {'user_id': user_id, 'role_id': role_id, 'status': 'revoked'}


def _bulk_item(session, item, company_id):
    if not isinstance(item, dict):
        return {'success': False, 'error': 'assignment must be an object'}
    user_id, role_id = item.get('user_id'), item.get('role_id')
    out = {'user_id': user_id, 'role_id': role_id}
    if any(isinstance(v, bool) or not isinstance(v, int) for v in (user_id, role_id)):
        return {**out, 'success': False, 'error': 'user_id and role_id must be int'}
    role = session.execute(
        select(Role).where(
            Role.id == role_id,
            Role.type == RoleType.COMPANY.value,
            Role.company_id == company_id,
            Role.deleted_at.is_(None),
        )
    ).scalar_one_or_none()
    if role is None:
        return {**out, 'success': False, 'error': 'Role not found'}
    user = session.get(User, user_id)
    if user is None or not is_company_member(user, company_id):
        return {**out, 'success': False, 'error': 'User not found'}
    if _existing_assignment(session, user_id, role_id, company_id) is not None:
        return {**out, 'success': False, 'error': 'User already has this role'}
    session.add(UserRole(user_id=user_id, role_id=role_id, company_id=company_id, assigned_by=g.current_user.id))
    session.flush()
    return {**out, 'success': True}


@roles_bp.post('/assign/bulk')
@require_permission('role:assign')
@audit_log('USER.ROLE.ASSIGN_BULK', entity='User', meta_keys=['assigned', 'failed'])
def bulk_assign_roles():
    """Assign several (user, role) pairs; each pair succeeds or fails on its own."""
    company_id = require_company_context()
    data = request.json or {}
    items = data.get('assignments')
    if not isinstance(items, list) or not items:
        abort(400, description='assignments must be a non-empty list')
    session = get_db()
    results = [_bulk_item(session, item, company_id) for item in items]
    session.commit()
    assigned = sum(1 for r in results if r['success'])
    return {'results': results, 'assigned': assigned, 'failed': len(results) - assigned}
