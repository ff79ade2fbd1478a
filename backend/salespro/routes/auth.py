from flask import Blueprint, request, abort, current_app, g
from flask_jwt_extended import create_access_token
from sqlalchemy import select
from salespro import get_db
from salespro.models.authz import Company, User
from salespro.services.sessions import create_session, destroy_session, switch_company
from salespro.services.policy import (
    can_switch_companies,
    current_context,
    is_company_member,
    member_company_ids,
)
from salespro.decorators.auth import require_auth
from salespro.decorators.audit import audit_log

auth_bp = Blueprint('auth', __name__)


def _company_json(company):
    if company is None:
        return None
    return {'id': company.id, 'name': company.name}


@auth_bp.post('/login')
def login():
    data = request.json or {}
    email = data.get('email'); password = data.get('password')
    if not email or not password:
        abort(400, description='email & password required')
    session = get_db()
    user = session.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if not user or not user.verify_password(password):
        current_app.logger.info('auth.login_failed email=%s', email)
        abort(401, description='invalid credentials')
    if not user.is_active:
        abort(401, description='Account is deactivated')
    company_id = None
    if not user.is_internal:
        company_id = data.get('company_id') or user.company_id
        if company_id is None or not is_company_member(user, company_id):
            abort(401, description='No company access')
        company = session.get(Company, company_id)
        if company is None or not company.is_active:
            abort(401, description='Company is inactive')
    row = create_session(user, company_id)
    # JWT identity must be a string (flask-jwt-extended v4 requirement)
    token = create_access_token(identity=str(user.id), additional_claims={'sid': row.sid})
    current_app.logger.info('auth.login user_id=%s user_type=%s', user.id, user.user_type)
    return {'access_token': token}


@auth_bp.post('/logout')
@require_auth
def logout():
    destroy_session(g.current_session.sid)
    return {'status': 'logged_out'}


@auth_bp.get('/me')
@require_auth
def me():
    user = g.current_user
    ctx = current_context()
    company = get_db().get(Company, ctx.company_id) if ctx.company_id is not None else None
    return {
        'id': user.id,
        'name': user.name,
        'email': user.email,
        'user_type': user.user_type,
        'company': _company_json(company),
        'roles': list(ctx.role_names),
        'permissions': list(dict.fromkeys(ctx.patterns)),
        'can_switch_companies': can_switch_companies(user),
    }


@auth_bp.get('/companies')
@require_auth
def my_companies():
    user = g.current_user
    ids = sorted(member_company_ids(user))
    rows = get_db().execute(select(Company).where(Company.id.in_(ids), Company.is_active.is_(True))).scalars().all() if ids else []
    return {'data': [_company_json(c) for c in rows]}


@auth_bp.post('/switch-company')
@require_auth
@audit_log('COMPANY.SWITCH', entity='Company', entity_id_key='company_id')
def switch_my_company():
    user = g.current_user
    if user.is_internal:
        abort(400, description='Internal users switch company through /platform/switch-company')
    data = request.json or {}
    company_id = data.get('company_id')
    if not isinstance(company_id, int):
        abort(400, description='company_id must be int')
    company = get_db().get(Company, company_id)
    # non-members see the same answer as for a missing company
    if company is None or not is_company_member(user, company_id):
        abort(404)
    if not company.is_active:
        abort(400, description='Cannot switch to inactive company')
    switch_company(g.current_session, company_id)
    return {'company_id': company.id, 'name': company.name}
