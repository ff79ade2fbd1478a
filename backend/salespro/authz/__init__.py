"""Authorization core: pattern matching and per-request permission resolution."""
from .matcher import authorize, authorize_all, authorize_any, expand, matches, parse_pattern
from .context import (
    AuthorizationContext,
    Principal,
    RoleAssignment,
    RoleGrant,
    RoleType,
    SessionContext,
    UserType,
    applicable_assignments,
    build_authorization_context,
    effective_company,
    resolve_effective_patterns,
)

__all__ = [
    'authorize', 'authorize_all', 'authorize_any', 'expand', 'matches', 'parse_pattern',
    'AuthorizationContext', 'Principal', 'RoleAssignment', 'RoleGrant', 'RoleType', 'SessionContext',
    'UserType', 'applicable_assignments', 'build_authorization_context', 'effective_company',
    'resolve_effective_patterns',
]
