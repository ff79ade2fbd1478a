from datetime import datetime, timedelta, timezone
from sqlalchemy import select
from salespro import get_db
from salespro.authz import RoleType
from salespro.models.authz import Session
from tests.test_utils_seed import (
    ensure_company, ensure_user, ensure_membership, ensure_role, ensure_user_role_assignment,
    seed_company_user, seed_internal_user, login,
)


def test_login_and_me(client):
    acme = ensure_company('Acme')
    seed_company_user('t@example.com', acme, ['customer:read', 'customer:create'])

    headers = login(client, 't@example.com')
    me = client.get('/auth/me', headers=headers)
    assert me.status_code == 200
    body = me.get_json()
    assert body['email'] == 't@example.com'
    assert body['user_type'] == 'company'
    assert body['company'] == {'id': acme.id, 'name': 'Acme'}
    assert body['permissions'] == ['customer:read', 'customer:create']
    assert body['can_switch_companies'] is False


def test_login_rejects_bad_credentials(client):
    acme = ensure_company('Acme')
    ensure_user('t@example.com', acme)
    resp = client.post('/auth/login', json={'email': 't@example.com', 'password': 'wrong'})
    assert resp.status_code == 401
    assert resp.get_json()['error']['detail'] == 'invalid credentials'
    resp = client.post('/auth/login', json={'email': 'nobody@example.com', 'password': 'pw'})
    assert resp.status_code == 401
    resp = client.post('/auth/login', json={'email': 't@example.com'})
    assert resp.status_code == 400


def test_login_rejects_inactive_user_and_company(client):
    acme = ensure_company('Acme')
    ensure_user('off@example.com', acme, is_active=False)
    assert client.post('/auth/login', json={'email': 'off@example.com', 'password': 'pw'}).status_code == 401

    closed = ensure_company('Closed', is_active=False)
    ensure_user('closed@example.com', closed)
    assert client.post('/auth/login', json={'email': 'closed@example.com', 'password': 'pw'}).status_code == 401


def test_company_user_without_company_cannot_login(client):
    ensure_user('orphan@example.com')
    resp = client.post('/auth/login', json={'email': 'orphan@example.com', 'password': 'pw'})
    assert resp.status_code == 401
    assert resp.get_json()['error']['detail'] == 'No company access'


def test_login_into_non_member_company_is_rejected(client):
    acme = ensure_company('Acme')
    other = ensure_company('Other')
    ensure_user('t@example.com', acme)
    resp = client.post('/auth/login', json={'email': 't@example.com', 'password': 'pw', 'company_id': other.id})
    assert resp.status_code == 401


def test_missing_and_garbage_tokens_are_401(client):
    resp = client.get('/auth/me')
    assert resp.status_code == 401
    assert resp.get_json()['error']['status'] == 401
    resp = client.get('/auth/me', headers={'Authorization': 'Bearer not-a-jwt'})
    assert resp.status_code == 401


def test_logout_invalidates_token(client):
    acme = ensure_company('Acme')
    ensure_user('t@example.com', acme)
    headers = login(client, 't@example.com')
    assert client.post('/auth/logout', headers=headers).status_code == 200
    resp = client.get('/auth/me', headers=headers)
    assert resp.status_code == 401
    assert 'Session expired' in resp.get_json()['error']['detail']


def test_expired_session_is_rejected(client):
    acme = ensure_company('Acme')
    user = ensure_user('t@example.com', acme)
    headers = login(client, 't@example.com')
    session = get_db()
    row = session.execute(select(Session).where(Session.user_id == user.id)).scalar_one()
    row.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
    session.commit()
    assert client.get('/auth/me', headers=headers).status_code == 401


def test_deactivated_user_loses_access_mid_session(client):
    acme = ensure_company('Acme')
    user = ensure_user('t@example.com', acme)
    headers = login(client, 't@example.com')
    user.is_active = False
    get_db().commit()
    resp = client.get('/auth/me', headers=headers)
    assert resp.status_code == 401
    assert resp.get_json()['error']['detail'] == 'Account is deactivated'


def test_company_user_switches_between_member_companies(client):
    a = ensure_company('A')
    b = ensure_company('B')
    user, _ = seed_company_user('multi@example.com', a, ['customer:read'], role_name='aReader')
    ensure_membership(user, b)
    b_role = ensure_role('bAdmin', ['user:*'], RoleType.COMPANY, b)
    ensure_user_role_assignment(user, b_role, b)

    headers = login(client, 'multi@example.com')
    me = client.get('/auth/me', headers=headers).get_json()
    assert me['can_switch_companies'] is True
    assert me['permissions'] == ['customer:read']

    companies = client.get('/auth/companies', headers=headers).get_json()['data']
    assert {c['id'] for c in companies} == {a.id, b.id}

    resp = client.post('/auth/switch-company', json={'company_id': b.id}, headers=headers)
    assert resp.status_code == 200, resp.get_json()
    me = client.get('/auth/me', headers=headers).get_json()
    assert me['company']['id'] == b.id
    assert me['permissions'] == ['user:*']
    assert me['roles'] == ['bAdmin']


def test_company_switch_guards(client):
    a = ensure_company('A')
    b = ensure_company('B')
    closed = ensure_company('Closed', is_active=False)
    user = ensure_user('multi@example.com', a)
    ensure_membership(user, closed)
    headers = login(client, 'multi@example.com')

    # not a member: same answer as an unknown company
    assert client.post('/auth/switch-company', json={'company_id': b.id}, headers=headers).status_code == 404
    assert client.post('/auth/switch-company', json={'company_id': 9999}, headers=headers).status_code == 404
    assert client.post('/auth/switch-company', json={'company_id': closed.id}, headers=headers).status_code == 400
    assert client.post('/auth/switch-company', json={'company_id': 'x'}, headers=headers).status_code == 400


def test_internal_user_login_has_no_company(client):
    seed_internal_user('ops@example.com', ['platform:view_companies'], company_permissions=['customer:read'])
    headers = login(client, 'ops@example.com')
    me = client.get('/auth/me', headers=headers).get_json()
    assert me['user_type'] == 'internal'
    assert me['company'] is None
    assert me['permissions'] == ['platform:view_companies']
    # internal users use the platform endpoint instead
    assert client.post('/auth/switch-company', json={'company_id': 1}, headers=headers).status_code == 400
