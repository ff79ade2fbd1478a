"""companies, users, roles, sessions and audit log

Revision ID: 0001_initial_tenancy_authz
Revises: 
Create Date: 2026-10-19
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_initial_tenancy_authz'
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name):
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'))


def upgrade():
    op.create_table('companies',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        _timestamp('updated_at'),
    )

    op.create_table('roles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('display_name', sa.String(length=100), nullable=False),
        sa.Column('description', sa.String(length=500)),
        sa.Column('type', sa.String(length=16), nullable=False, server_default='company'),
        sa.Column('permissions', sa.JSON(), nullable=False),
        sa.Column('company_permissions', sa.JSON(), nullable=True),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        _timestamp('updated_at'),
    )
    op.create_index('ix_roles_name', 'roles', ['name'])
    op.create_index('ix_roles_company_id', 'roles', ['company_id'])
    # unique constraint handled via batch for sqlite
    with op.batch_alter_table('roles') as batch_op:
        batch_op.create_unique_constraint('uq_role_name_company', ['name', 'company_id'])
    # NULL company_id never collides in the constraint above; unowned names need their own index
    op.create_index(
        'uq_role_name_unowned', 'roles', ['name'], unique=True,
        sqlite_where=sa.text('company_id IS NULL'), postgresql_where=sa.text('company_id IS NULL'),
    )

    op.create_table('users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=128), nullable=False, unique=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('user_type', sa.String(length=16), nullable=False, server_default='company'),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        _timestamp('updated_at'),
    )
    op.create_index('ix_users_email', 'users', ['email'])
    op.create_index('ix_users_company_id', 'users', ['company_id'])

    op.create_table('user_companies',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
    )
    with op.batch_alter_table('user_companies') as batch_op:
        batch_op.create_unique_constraint('uq_user_company', ['user_id', 'company_id'])

    op.create_table('user_roles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role_id', sa.Integer(), sa.ForeignKey('roles.id'), nullable=False),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=True),
        sa.Column('assigned_by', sa.Integer(), nullable=True),
        _timestamp('assigned_at'),
    )
    with op.batch_alter_table('user_roles') as batch_op:
        batch_op.create_unique_constraint('uq_user_role_company', ['user_id', 'role_id', 'company_id'])
    op.create_index(
        'uq_user_role_unscoped', 'user_roles', ['user_id', 'role_id'], unique=True,
        sqlite_where=sa.text('company_id IS NULL'), postgresql_where=sa.text('company_id IS NULL'),
    )

    op.create_table('sessions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('sid', sa.String(length=36), nullable=False, unique=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=True),
        sa.Column('active_company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        _timestamp('created_at'),
    )
    op.create_index('ix_sessions_sid', 'sessions', ['sid'])
    op.create_index('ix_sessions_user_id', 'sessions', ['user_id'])

    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('actor_user_id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity', sa.String(length=64)),
        sa.Column('entity_id', sa.String(length=64)),
        sa.Column('perms_snapshot', sa.JSON(), nullable=True),
        sa.Column('meta', sa.JSON(), nullable=True),
        _timestamp('created_at'),
    )
    op.create_index('ix_audit_logs_actor_user_id', 'audit_logs', ['actor_user_id'])
    op.create_index('ix_audit_logs_company_id', 'audit_logs', ['company_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])


def downgrade():
    for tbl in ['audit_logs', 'sessions', 'user_roles', 'user_companies', 'users', 'roles', 'companies']:
        op.drop_table(tbl)
