from flask import Blueprint, request, abort, g, current_app
from sqlalchemy import select, or_
from salespro import get_db
from salespro.authz import UserType
from salespro.models.authz import Role, User, UserCompany
from salespro.services.policy import assign_default_roles, require_company_context
from salespro.utils.listing import paginated_response
from salespro.decorators.auth import require_permission
from salespro.decorators.audit import audit_log

users_bp = Blueprint('users', __name__)


def _user_json(u: User):
    return {'id': u.id, 'name': u.name, 'email': u.email, 'is_active': u.is_active}


@users_bp.get('')
@require_permission('user:read')
def list_users():
    """Company users who are members of the current company."""
    company_id = require_company_context()
    members = select(UserCompany.user_id).where(UserCompany.company_id == company_id, UserCompany.is_active.is_(True))
    stmt = (
        select(User)
        .where(User.user_type == UserType.COMPANY.value)
        .where(or_(User.company_id == company_id, User.id.in_(members)))
        .order_by(User.id.asc())
    )
    return paginated_response(stmt, _user_json)


@users_bp.post('')
@require_permission('user:create')
@audit_log('USER.CREATE', entity='User', entity_id_key='id', meta_keys=['email', 'roles'])
def create_user():
    """Create a company user in the current company; default SYSTEM roles are attached."""
    company_id = require_company_context()
    data = request.json or {}
    email = data.get('email')
    password = data.get('password')
    if not isinstance(email, str) or '@' not in email:
        abort(400, description='valid email required')
    if not isinstance(password, str) or len(password) < 8:
        abort(400, description='password must be at least 8 characters')
    email = email.strip().lower()
    session = get_db()
    if session.execute(select(User.id).where(User.email == email)).first() is not None:
        abort(409, description='Email already in use')
    user = User(
        name=data.get('name') or email.split('@')[0],
        email=email,
        user_type=UserType.COMPANY.value,
        company_id=company_id,
        is_active=True,
    )
    user.set_password(password)
    session.add(user)
    session.flush()
    session.add(UserCompany(user_id=user.id, company_id=company_id))
    defaults = assign_default_roles(user, assigned_by=g.current_user.id)
    session.commit()
    current_app.logger.info('users.create user_id=%s company_id=%s', user.id, company_id)
    out = _user_json(user)
    out['roles'] = sorted(session.get(Role, ur.role_id).name for ur in defaults)
    return out, 201
