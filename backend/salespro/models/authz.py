from __future__ import annotations
from sqlalchemy.orm import declarative_base, relationship, Mapped, mapped_column
from sqlalchemy import String, Integer, Boolean, ForeignKey, JSON, UniqueConstraint, DateTime, Index, text
from typing import Optional, List
from datetime import datetime

from salespro.authz.context import RoleGrant, RoleType, UserType

Base = declarative_base()


class Company(Base):
    __tablename__ = 'companies'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'), server_onupdate=text('CURRENT_TIMESTAMP'))


class Role(Base):
    __tablename__ = 'roles'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500))
    type: Mapped[str] = mapped_column(String(16), nullable=False, default=RoleType.COMPANY.value)
    # patterns: exact codes, 'resource:*' or '*'
    permissions: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    company_permissions: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    company_id: Mapped[Optional[int]] = mapped_column(ForeignKey('companies.id', ondelete='CASCADE'), nullable=True, index=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'), server_onupdate=text('CURRENT_TIMESTAMP'))

    company = relationship('Company')
    user_roles = relationship('UserRole', back_populates='role')

    # NULL company_id never collides in a unique constraint; unowned (SYSTEM / PLATFORM) names get a partial index
    __table_args__ = (
        UniqueConstraint('name', 'company_id', name='uq_role_name_company'),
        Index('uq_role_name_unowned', 'name', unique=True,
              sqlite_where=text('company_id IS NULL'), postgresql_where=text('company_id IS NULL')),
    )

    @property
    def role_type(self) -> RoleType:
        return RoleType(self.type)

    def to_grant(self) -> RoleGrant:
        company_perms = self.company_permissions
        return RoleGrant(
            id=self.id,
            name=self.name,
            type=self.role_type,
            permissions=tuple(self.permissions or ()),
            company_permissions=tuple(company_perms) if company_perms is not None else None,
            company_id=self.company_id,
        )


class User(Base):
    __tablename__ = 'users'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    user_type: Mapped[str] = mapped_column(String(16), nullable=False, default=UserType.COMPANY.value)
    # home company; None for internal users
    company_id: Mapped[Optional[int]] = mapped_column(ForeignKey('companies.id'), nullable=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'), server_onupdate=text('CURRENT_TIMESTAMP'))

    company = relationship('Company')
    user_roles = relationship('UserRole', back_populates='user', cascade='all, delete-orphan')
    memberships = relationship('UserCompany', back_populates='user', cascade='all, delete-orphan')

    @property
    def is_internal(self) -> bool:
        return self.user_type == UserType.INTERNAL.value

    def set_password(self, raw: str):
        from werkzeug.security import generate_password_hash
        self.password_hash = generate_password_hash(raw)

    def verify_password(self, raw: str) -> bool:
        from werkzeug.security import check_password_hash
        return check_password_hash(self.password_hash, raw)


class UserCompany(Base):
    """Company membership; company users may belong to several companies."""
    __tablename__ = 'user_companies'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    company_id: Mapped[int] = mapped_column(ForeignKey('companies.id', ondelete='CASCADE'), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    __table_args__ = (UniqueConstraint('user_id', 'company_id', name='uq_user_company'),)
    user = relationship('User', back_populates='memberships')
    company = relationship('Company')


class UserRole(Base):
    __tablename__ = 'user_roles'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    role_id: Mapped[int] = mapped_column(ForeignKey('roles.id'), nullable=False)
    # required for COMPANY roles, None for SYSTEM / PLATFORM roles
    company_id: Mapped[Optional[int]] = mapped_column(ForeignKey('companies.id', ondelete='CASCADE'), nullable=True)
    assigned_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'))
    __table_args__ = (
        UniqueConstraint('user_id', 'role_id', 'company_id', name='uq_user_role_company'),
        Index('uq_user_role_unscoped', 'user_id', 'role_id', unique=True,
              sqlite_where=text('company_id IS NULL'), postgresql_where=text('company_id IS NULL')),
    )
    user = relationship('User', back_populates='user_roles')
    role = relationship('Role', back_populates='user_roles')
    company = relationship('Company')


class Session(Base):
    __tablename__ = 'sessions'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sid: Mapped[str] = mapped_column(String(36), unique=True, index=True, nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    # bound company (company users)
    company_id: Mapped[Optional[int]] = mapped_column(ForeignKey('companies.id'), nullable=True)
    # switched-into company (internal users)
    active_company_id: Mapped[Optional[int]] = mapped_column(ForeignKey('companies.id'), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'))

    user = relationship('User')
