#!/usr/bin/env python
"""Idempotent seed script for built-in roles and the first internal admin.

Usage:
    python backend/scripts/seed_authz.py               # seed normally
    python backend/scripts/seed_authz.py --show-roles  # print role -> pattern summary (after ensuring seed)
    python backend/scripts/seed_authz.py --dry-run     # run logic then rollback (no DB changes)
    python backend/scripts/seed_authz.py --validate    # check stored role patterns; exits 2 on problems
    python backend/scripts/seed_authz.py --export-json roles.json
"""
from __future__ import annotations
import os, sys, argparse, textwrap, json, hashlib
from sqlalchemy import select, text

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from salespro import create_app, get_db  # type: ignore
from salespro.authz import RoleType, UserType
from salespro.models.authz import Base, Role, User, UserRole
from salespro.constants.permissions import ROLE_PRESETS, is_platform_permission
from salespro.utils.validation import pattern_problem


def ensure_roles(session):
    """Create missing SYSTEM / PLATFORM presets; refresh patterns of existing ones."""
    existing = {
        r.name: r for r in session.execute(
            select(Role).where(Role.company_id.is_(None), Role.deleted_at.is_(None))
        ).scalars().all()
    }
    created = updated = 0
    for name, preset in ROLE_PRESETS.items():
        role = existing.get(name)
        company_perms = preset.get('company_permissions')
        if role is None:
            session.add(Role(
                name=name,
                display_name=preset['display_name'],
                description=preset.get('description'),
                type=preset['type'],
                permissions=list(preset['permissions']),
                company_permissions=list(company_perms) if company_perms is not None else None,
                is_default=preset.get('is_default', False),
                company_id=None,
            ))
            created += 1
            continue
        if role.type != preset['type']:
            print(f"[WARN] Role {name} exists with type {role.type}, expected {preset['type']}; left untouched")
            continue
        if list(role.permissions or []) != list(preset['permissions']) or role.company_permissions != company_perms:
            role.permissions = list(preset['permissions'])
            role.company_permissions = list(company_perms) if company_perms is not None else None
            updated += 1
    session.flush()
    return created, updated


def ensure_initial_admin(session):
    admin_role = session.execute(
        select(Role).where(Role.name == 'platformAdmin', Role.type == RoleType.PLATFORM.value)
    ).scalar_one_or_none()
    if not admin_role:
        print('[WARN] platformAdmin role missing; skipping admin user creation')
        return None
    admin_email = os.getenv('SEED_ADMIN_EMAIL', 'admin@example.com')
    existing_admin = session.execute(select(User).where(User.email == admin_email)).scalar_one_or_none()
    if existing_admin:
        return existing_admin
    user = User(name='Platform Admin', email=admin_email, user_type=UserType.INTERNAL.value, company_id=None)
    user.set_password(os.getenv('SEED_ADMIN_PASSWORD', 'ChangeMe123!'))
    session.add(user)
    session.flush()
    session.add(UserRole(user_id=user.id, role_id=admin_role.id, company_id=None))
    print(f"[INFO] Created initial internal admin {admin_email} with temporary password.")
    return user


def validate_roles(session):
    """Problems with stored role patterns, one message per problem."""
    problems = []
    for role in session.execute(select(Role).where(Role.deleted_at.is_(None))).scalars().all():
        for p in role.permissions or []:
            problem = pattern_problem(p)
            if problem:
                problems.append(f"Role '{role.name}' pattern '{p}': {problem}")
            elif role.type == RoleType.PLATFORM.value and not is_platform_permission(p):
                problems.append(f"Platform role '{role.name}' grants non-platform pattern '{p}' outside company context")
        for p in role.company_permissions or []:
            problem = pattern_problem(p)
            if problem:
                problems.append(f"Role '{role.name}' company pattern '{p}': {problem}")
        if role.type != RoleType.PLATFORM.value and role.company_permissions:
            problems.append(f"Role '{role.name}' has company_permissions but is not a platform role")
        if role.type == RoleType.COMPANY.value and role.company_id is None:
            problems.append(f"Company role '{role.name}' has no owning company")
    return problems


def build_role_pattern_map(session):
    mapping = {}
    for role in session.execute(
        select(Role).where(Role.company_id.is_(None), Role.deleted_at.is_(None))
    ).scalars().all():
        entry = {'type': role.type, 'permissions': sorted(role.permissions or [])}
        if role.company_permissions is not None:
            entry['company_permissions'] = sorted(role.company_permissions)
        mapping[role.name] = entry
    return mapping


def print_role_summary(session):
    rows = build_role_pattern_map(session)
    if not rows:
        print("[INFO] No roles present.")
        return
    name_w = max(len(n) for n in rows)
    print(f"{'Role'.ljust(name_w)} | Type     | Count | Sample (up to 8)")
    print('-' * (name_w + 50))
    for name, entry in rows.items():
        perms = entry['permissions']
        print(f"{name.ljust(name_w)} | {entry['type'].ljust(8)} | {str(len(perms)).rjust(5)} | {', '.join(perms[:8])}")


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Seed built-in roles & the initial internal admin",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  seed normally: seed_authz.py\n  dry run: seed_authz.py --dry-run\n  show roles: seed_authz.py --show-roles\n""")
    )
    p.add_argument('--show-roles', action='store_true', help='Print role pattern summary after seeding')
    p.add_argument('--dry-run', action='store_true', help='Rollback after operations (no commit)')
    p.add_argument('--export-json', nargs='?', const='-', metavar='FILE', help='Export role->patterns JSON (to FILE or stdout if omitted)')
    p.add_argument('--validate', action='store_true', help='Validate stored role patterns; exits non-zero on problems')
    return p.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    app = create_app()
    with app.app_context():
        session = get_db()
        try:
            session.execute(text('SELECT 1 FROM roles LIMIT 1'))
        except Exception:
            # bootstrap only; real environments run alembic upgrade head
            session.rollback()
            import salespro.models.audit  # noqa: F401
            Base.metadata.create_all(session.get_bind())
        finally:
            session.commit()

    with app.app_context():
        session = get_db()
        try:
            created, updated = ensure_roles(session)
            ensure_initial_admin(session)
            if args.validate:
                problems = validate_roles(session)
                if problems:
                    print('\n[VALIDATION] FAIL:')
                    for p in problems:
                        print(' -', p)
                    session.rollback()
                    sys.exit(2)
                print('[VALIDATION] OK: All role patterns valid.')
            role_map = build_role_pattern_map(session)
            if args.dry_run:
                session.rollback()
                print(f"[DRY-RUN] (rolled back) Roles would create: {created}, update: {updated}")
            else:
                session.commit()
                print(f"[DONE] Roles created: {created}, updated: {updated}")
            if args.show_roles:
                print('\nRole Summary:')
                if args.dry_run:
                    print('[INFO] dry run: summary reflects the database before seeding')
                print_role_summary(session)
            if args.export_json is not None:
                canonical = json.dumps(role_map, sort_keys=True, separators=(',', ':'))
                payload = {
                    'roles': role_map,
                    'meta': {
                        'roles_checksum_sha256': hashlib.sha256(canonical.encode('utf-8')).hexdigest(),
                        'role_names_sorted': sorted(role_map),
                        'dry_run': args.dry_run,
                    },
                }
                if args.export_json == '-':
                    print(json.dumps(payload, indent=2, sort_keys=True))
                else:
                    with open(args.export_json, 'w', encoding='utf-8') as f:
                        json.dump(payload, f, indent=2, sort_keys=True)
                    print(f"[INFO] Exported JSON to {args.export_json}")
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


if __name__ == '__main__':
    main()
