from sqlalchemy import select
from salespro import get_db
from salespro.authz import RoleType
from salespro.models.audit import AuditLog
from salespro.models.authz import Company, User, UserRole
from tests.test_utils_seed import (
    ensure_company, ensure_role, ensure_user, ensure_user_role_assignment, seed_internal_user, login,
)


def _platform_admin(client):
    user, role = seed_internal_user('root@platform.test', ['platform:*'], company_permissions=['*'], role_name='rootAdmin')
    return user, role, login(client, 'root@platform.test')


def test_list_companies_with_filters(client):
    user, role, headers = _platform_admin(client)
    ensure_company('Beta')
    ensure_company('Alpha')
    ensure_company('Gone', is_active=False)

    body = client.get('/platform/companies', headers=headers).get_json()
    assert [c['name'] for c in body['data']] == ['Alpha', 'Beta', 'Gone']
    active = client.get('/platform/companies?is_active=true', headers=headers).get_json()
    assert [c['name'] for c in active['data']] == ['Alpha', 'Beta']
    found = client.get('/platform/companies?search=alp', headers=headers).get_json()
    assert [c['name'] for c in found['data']] == ['Alpha']


def test_platform_routes_require_the_platform_permission(client):
    seed_internal_user('dev@platform.test', ['platform:switch_company'])
    headers = login(client, 'dev@platform.test')
    resp = client.get('/platform/companies', headers=headers)
    assert resp.status_code == 403
    assert resp.get_json()['error']['required_permission'] == 'platform:view_companies'
    assert client.get('/platform/roles', headers=headers).status_code == 403
    assert client.get('/platform/audit/logs', headers=headers).status_code == 403


def test_switch_into_company_uses_company_permissions(client):
    acme = ensure_company('Acme')
    seed_internal_user(
        'support@platform.test',
        ['platform:view_companies', 'platform:switch_company'],
        company_permissions=['app:*', 'customer:read', 'role:read'],
    )
    headers = login(client, 'support@platform.test')
    me = client.get('/auth/me', headers=headers).get_json()
    assert me['can_switch_companies'] is True
    assert me['permissions'] == ['platform:view_companies', 'platform:switch_company']

    resp = client.post('/platform/switch-company', json={'company_id': acme.id}, headers=headers)
    assert resp.status_code == 200, resp.get_json()
    me = client.get('/auth/me', headers=headers).get_json()
    assert me['company']['id'] == acme.id
    assert me['permissions'] == ['app:*', 'customer:read', 'role:read']
    # company view now, platform permissions no longer apply
    assert client.get('/roles', headers=headers).status_code == 200
    assert client.get('/platform/companies', headers=headers).status_code == 403

    active = client.get('/platform/active-company', headers=headers).get_json()
    assert active['active_company']['id'] == acme.id

    assert client.delete('/platform/active-company', headers=headers).status_code == 200
    me = client.get('/auth/me', headers=headers).get_json()
    assert me['company'] is None
    assert me['permissions'] == ['platform:view_companies', 'platform:switch_company']
    assert client.get('/platform/active-company', headers=headers).get_json() == {'active_company': None}


def test_switch_company_validation(client):
    user, role, headers = _platform_admin(client)
    closed = ensure_company('Closed', is_active=False)
    assert client.post('/platform/switch-company', json={}, headers=headers).status_code == 400
    assert client.post('/platform/switch-company', json={'company_id': 'abc'}, headers=headers).status_code == 400
    assert client.post('/platform/switch-company', json={'company_id': True}, headers=headers).status_code == 400
    assert client.post('/platform/switch-company', json={'company_id': 404404}, headers=headers).status_code == 404
    resp = client.post('/platform/switch-company', json={'company_id': closed.id}, headers=headers)
    assert resp.status_code == 400
    assert resp.get_json()['error']['detail'] == 'Cannot switch to inactive company'


def test_switch_to_null_exits_company(client):
    acme = ensure_company('Acme')
    user, role, headers = _platform_admin(client)
    assert client.post('/platform/switch-company', json={'company_id': acme.id}, headers=headers).status_code == 200
    # company_permissions '*' still covers platform:switch_company
    resp = client.post('/platform/switch-company', json={'company_id': None}, headers=headers)
    assert resp.status_code == 200
    assert resp.get_json() == {'company_id': None, 'name': None}
    assert client.get('/auth/me', headers=headers).get_json()['company'] is None


def test_company_user_cannot_use_platform_switch(client):
    acme = ensure_company('Acme')
    ensure_user('rep@acme.test', acme)
    headers = login(client, 'rep@acme.test')
    assert client.post('/platform/switch-company', json={'company_id': acme.id}, headers=headers).status_code == 403
    assert client.delete('/platform/active-company', headers=headers).status_code == 403


def test_platform_role_crud(client):
    user, role, headers = _platform_admin(client)
    resp = client.post('/platform/roles', json={
        'name': 'auditor',
        'permissions': ['platform:view_audit_logs', 'platform:view_companies'],
        'company_permissions': ['report:*'],
    }, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    created = resp.get_json()
    assert created['type'] == 'platform'
    assert created['company_permissions'] == ['report:*']

    listed = client.get('/platform/roles', headers=headers).get_json()
    assert {r['name'] for r in listed['data']} == {'rootAdmin', 'auditor'}

    resp = client.patch(f"/platform/roles/{created['id']}", json={'company_permissions': ['report:read']}, headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()['company_permissions'] == ['report:read']

    assert client.delete(f"/platform/roles/{role.id}", headers=headers).status_code == 409
    assert client.delete(f"/platform/roles/{created['id']}", headers=headers).status_code == 200
    assert client.patch(f"/platform/roles/{created['id']}", json={}, headers=headers).status_code == 404

    actions = [a.action for a in get_db().execute(select(AuditLog).order_by(AuditLog.id)).scalars()]
    assert actions == ['PLATFORM.ROLE.CREATE', 'PLATFORM.ROLE.UPDATE', 'PLATFORM.ROLE.DELETE']


def test_platform_role_validation(client):
    user, role, headers = _platform_admin(client)
    ensure_role('viewer', ['customer:read'], RoleType.SYSTEM)
    acme = ensure_company('Acme')
    company_role = ensure_role('local', ['customer:read'], RoleType.COMPANY, acme)
    bad_bodies = [
        {'name': 'p1', 'permissions': []},
        {'name': 'p1'},
        {'name': 'p1', 'permissions': ['customer:read']},
        {'name': 'p1', 'permissions': ['*']},
        {'name': 'p1', 'permissions': ['platform:view_companies'], 'company_permissions': ['platform:admin']},
        {'name': 'p1', 'permissions': ['platform:view_companies'], 'company_permissions': ['nope:*']},
        {'name': 'viewer', 'permissions': ['platform:view_companies']},
    ]
    for body in bad_bodies:
        assert client.post('/platform/roles', json=body, headers=headers).status_code == 400, body
    # SYSTEM and COMPANY roles are not reachable here
    assert client.patch(f'/platform/roles/{company_role.id}', json={}, headers=headers).status_code == 404


def test_audit_log_listing(client):
    acme = ensure_company('Acme')
    user, role, headers = _platform_admin(client)
    client.post('/platform/switch-company', json={'company_id': acme.id}, headers=headers)
    client.delete('/platform/active-company', headers=headers)

    body = client.get('/platform/audit/logs?action=COMPANY.SWITCH', headers=headers).get_json()
    assert body['pagination']['total'] == 2
    newest, oldest = body['data']
    assert oldest['entity_id'] == str(acme.id)
    assert oldest['actor_user_id'] == user.id
    assert oldest['perms_snapshot'] == {'patterns': ['platform:*']}
    assert newest['meta'] == {'company_id': None}
    assert client.get('/platform/audit/logs?company_id=x', headers=headers).status_code == 400
    filtered = client.get(f'/platform/audit/logs?actor_user_id={user.id + 1}', headers=headers).get_json()
    assert filtered['data'] == []


def test_create_and_update_company(client):
    user, role, headers = _platform_admin(client)
    resp = client.post('/platform/companies', json={'name': ' Delta '}, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    company = resp.get_json()
    assert company == {'id': company['id'], 'name': 'Delta', 'is_active': True}
    assert client.post('/platform/companies', json={'name': 'Delta'}, headers=headers).status_code == 409
    assert client.post('/platform/companies', json={'name': ''}, headers=headers).status_code == 400

    resp = client.patch(f"/platform/companies/{company['id']}", json={'is_active': False}, headers=headers)
    assert resp.status_code == 200
    assert get_db().get(Company, company['id']).is_active is False
    assert client.patch(f"/platform/companies/{company['id']}", json={'is_active': 'no'}, headers=headers).status_code == 400
    assert client.patch('/platform/companies/424242', json={'name': 'X'}, headers=headers).status_code == 404

    audit = get_db().execute(select(AuditLog).where(AuditLog.action == 'COMPANY.UPDATE')).scalar_one()
    assert audit.meta['changes'] == {'is_active': {'before': True, 'after': False}}


def test_company_writes_need_their_own_permissions(client):
    seed_internal_user('look@platform.test', ['platform:view_companies'])
    headers = login(client, 'look@platform.test')
    acme = ensure_company('Acme')
    resp = client.post('/platform/companies', json={'name': 'New'}, headers=headers)
    assert resp.get_json()['error']['required_permission'] == 'platform:create_company'
    resp = client.patch(f'/platform/companies/{acme.id}', json={'name': 'New'}, headers=headers)
    assert resp.get_json()['error']['required_permission'] == 'platform:update_company'


def test_internal_user_management(client):
    user, role, headers = _platform_admin(client)
    support = ensure_role('support', ['platform:view_companies'], RoleType.PLATFORM)
    dev = ensure_role('dev', ['platform:switch_company'], RoleType.PLATFORM)

    resp = client.post('/platform/internal-users', json={
        'email': 'New@Platform.test', 'password': 'longenough', 'platform_role_id': support.id,
    }, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    created = resp.get_json()
    assert created['email'] == 'new@platform.test'
    assert created['platform_role']['name'] == 'support'
    assert get_db().get(User, created['id']).is_internal

    dup = client.post('/platform/internal-users', json={
        'email': 'new@platform.test', 'password': 'longenough', 'platform_role_id': support.id,
    }, headers=headers)
    assert dup.status_code == 409
    bad_role = client.post('/platform/internal-users', json={
        'email': 'other@platform.test', 'password': 'longenough', 'platform_role_id': 424242,
    }, headers=headers)
    assert bad_role.status_code == 400

    resp = client.patch(f"/platform/internal-users/{created['id']}", json={'platform_role_id': dev.id}, headers=headers)
    assert resp.get_json()['platform_role']['name'] == 'dev'
    rows = get_db().execute(select(UserRole).where(UserRole.user_id == created['id'])).scalars().all()
    assert [r.role_id for r in rows] == [dev.id]

    me = client.get('/auth/me', headers=login(client, 'new@platform.test', password='longenough')).get_json()
    assert me['permissions'] == ['platform:switch_company']

    listed = client.get('/platform/internal-users', headers=headers).get_json()
    assert {u['email'] for u in listed['data']} == {'root@platform.test', 'new@platform.test'}


def test_internal_user_cannot_deactivate_self(client):
    user, role, headers = _platform_admin(client)
    resp = client.patch(f'/platform/internal-users/{user.id}', json={'is_active': False}, headers=headers)
    assert resp.status_code == 400
    company_user = ensure_user('rep@acme.test', ensure_company('Acme'))
    resp = client.patch(f'/platform/internal-users/{company_user.id}', json={'name': 'x'}, headers=headers)
    assert resp.status_code == 404


def test_platform_admin_sets_system_roles(client):
    user, role, headers = _platform_admin(client)
    acme = ensure_company('Acme')
    viewer = ensure_role('viewer', ['customer:read'], RoleType.SYSTEM)
    closer = ensure_role('closer', ['customer:*'], RoleType.COMPANY, acme)
    rep = ensure_user('rep@acme.test', acme)
    ensure_user_role_assignment(rep, closer, acme)

    resp = client.put(f'/platform/users/{rep.id}/system-roles', json={'role_ids': [viewer.id]}, headers=headers)
    assert resp.status_code == 200, resp.get_json()
    rows = get_db().execute(select(UserRole).where(UserRole.user_id == rep.id)).scalars().all()
    assert {(r.role_id, r.company_id) for r in rows} == {(closer.id, acme.id), (viewer.id, None)}

    assert client.put(f'/platform/users/{rep.id}/system-roles', json={'role_ids': [closer.id]}, headers=headers).status_code == 400
    assert client.put(f'/platform/users/{user.id}/system-roles', json={'role_ids': []}, headers=headers).status_code == 404
