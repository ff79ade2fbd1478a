"""Effective permission resolution for a request.

Given the authenticated principal, the tenant context carried by its session and
the role assignments the data layer returned for it, decide which permission
patterns govern the request:

    SYSTEM roles      always apply, in every company context (or none)
    COMPANY roles     only when the assignment is scoped to the effective company
    PLATFORM roles    internal users only; ``permissions`` while no company is
                      active, ``company_permissions`` once switched into one

Assignments of COMPANY roles scoped to any other company never contribute. That
is the tenant isolation boundary.

Everything here is a pure function of its arguments. Callers pass only currently
valid assignments (soft-deleted roles and inactive companies filtered out).
"""
from __future__ import annotations
import enum
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple


class UserType(str, enum.Enum):
    COMPANY = 'company'
    INTERNAL = 'internal'


class RoleType(str, enum.Enum):
    SYSTEM = 'system'
    COMPANY = 'company'
    PLATFORM = 'platform'


@dataclass(frozen=True)
class Principal:
    id: int
    user_type: UserType

    @property
    def is_internal(self) -> bool:
        return self.user_type is UserType.INTERNAL


@dataclass(frozen=True)
class SessionContext:
    """Tenant fields of a session. ``bound_company_id`` is set for company users,
    ``active_company_id`` for internal users who switched into a company."""
    bound_company_id: Optional[int] = None
    active_company_id: Optional[int] = None


@dataclass(frozen=True)
class RoleGrant:
    """Immutable snapshot of a role as seen by the resolver."""
    id: int
    name: str
    type: RoleType
    permissions: Tuple[str, ...] = ()
    company_permissions: Optional[Tuple[str, ...]] = None
    company_id: Optional[int] = None


@dataclass(frozen=True)
class RoleAssignment:
    role: RoleGrant
    company_id: Optional[int] = None


@dataclass(frozen=True)
class AuthorizationContext:
    principal: Principal
    company_id: Optional[int]
    patterns: Tuple[str, ...] = field(default_factory=tuple)
    role_names: Tuple[str, ...] = field(default_factory=tuple)


def effective_company(principal: Principal, session: Optional[SessionContext]) -> Optional[int]:
    """Company context of the request, or None when no tenant applies."""
    if session is None:
        return None
    if principal.user_type is UserType.INTERNAL:
        return session.active_company_id
    return session.bound_company_id


def _company_assignment_applies(assignment: RoleAssignment, company_id: Optional[int]) -> bool:
    if company_id is None or assignment.company_id is None:
        return False
    if assignment.company_id != company_id:
        return False
    # role owned by another tenant than the assignment claims: data anomaly, deny
    owner = assignment.role.company_id
    return owner is None or owner == company_id


def applicable_assignments(
    principal: Principal,
    session: Optional[SessionContext],
    assignments: Iterable[RoleAssignment],
) -> List[RoleAssignment]:
    if principal is None:
        raise ValueError('principal is required')
    company_id = effective_company(principal, session)
    out: List[RoleAssignment] = []
    for assignment in assignments:
        role_type = assignment.role.type
        if role_type is RoleType.SYSTEM:
            out.append(assignment)
        elif role_type is RoleType.COMPANY:
            if _company_assignment_applies(assignment, company_id):
                out.append(assignment)
        elif role_type is RoleType.PLATFORM:
            if principal.is_internal:
                out.append(assignment)
    return out


def _patterns_for(assignment: RoleAssignment, company_id: Optional[int]) -> Tuple[str, ...]:
    role = assignment.role
    if role.type is RoleType.PLATFORM and company_id is not None:
        return tuple(role.company_permissions or ())
    return tuple(role.permissions)


def resolve_effective_patterns(
    principal: Principal,
    session: Optional[SessionContext],
    assignments: Iterable[RoleAssignment],
) -> Tuple[str, ...]:
    """Union of the applicable roles' patterns, in assignment order.

    Duplicates are kept; ``authorize`` short-circuits so they are harmless.
    """
    return build_authorization_context(principal, session, assignments).patterns


def build_authorization_context(
    principal: Principal,
    session: Optional[SessionContext],
    assignments: Iterable[RoleAssignment],
) -> AuthorizationContext:
    applicable = applicable_assignments(principal, session, assignments)
    company_id = effective_company(principal, session)
    patterns: List[str] = []
    for assignment in applicable:
        patterns.extend(_patterns_for(assignment, company_id))
    return AuthorizationContext(
        principal=principal,
        company_id=company_id,
        patterns=tuple(patterns),
        role_names=tuple(a.role.name for a in applicable),
    )


__all__ = [
    'UserType', 'RoleType', 'Principal', 'SessionContext', 'RoleGrant', 'RoleAssignment',
    'AuthorizationContext', 'effective_company', 'applicable_assignments',
    'resolve_effective_patterns', 'build_authorization_context',
]
