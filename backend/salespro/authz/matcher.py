"""Permission pattern matching.

Roles store permission patterns as plain strings. Three forms are recognised:

    '*'                 global wildcard, grants every permission
    'customer:*'        resource wildcard, grants every 'customer:<action>'
    'customer:read'     exact permission

Nothing else is a wildcard: 'cust*' or 'customer:re*' are compared literally and
therefore never grant a registered permission. Keep it that way; widening the
syntax changes what existing roles grant.

Patterns are parsed once (memoised) into small immutable objects so that
authorization checks are plain attribute comparisons.
"""
from __future__ import annotations
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, List, Sequence, Union

GLOBAL_WILDCARD = '*'
RESOURCE_WILDCARD_SUFFIX = ':*'


@dataclass(frozen=True)
class GlobalWildcard:
    def matches(self, permission: str) -> bool:
        return True

    def __str__(self) -> str:
        return GLOBAL_WILDCARD


@dataclass(frozen=True)
class ResourceWildcard:
    resource: str

    def matches(self, permission: str) -> bool:
        return permission.startswith(self.resource + ':')

    def __str__(self) -> str:
        return self.resource + RESOURCE_WILDCARD_SUFFIX


@dataclass(frozen=True)
class ExactPermission:
    value: str

    @property
    def resource(self) -> str:
        return self.value.partition(':')[0]

    @property
    def action(self) -> str:
        return self.value.partition(':')[2]

    def matches(self, permission: str) -> bool:
        return permission == self.value

    def __str__(self) -> str:
        return self.value


Pattern = Union[GlobalWildcard, ResourceWildcard, ExactPermission]
PatternLike = Union[str, GlobalWildcard, ResourceWildcard, ExactPermission]


@lru_cache(maxsize=4096)
def parse_pattern(raw: str) -> Pattern:
    """Parse a stored pattern string. Never raises; unknown shapes become exact literals."""
    if raw == GLOBAL_WILDCARD:
        return GlobalWildcard()
    if raw.endswith(RESOURCE_WILDCARD_SUFFIX):
        return ResourceWildcard(raw[:-len(RESOURCE_WILDCARD_SUFFIX)])
    return ExactPermission(raw)


def _as_pattern(pattern: PatternLike) -> Pattern:
    if isinstance(pattern, str):
        return parse_pattern(pattern)
    return pattern


def matches(permission: str, pattern: PatternLike) -> bool:
    """True if a single granted pattern covers the required permission.

    >>> matches('customer:read', 'customer:*')
    True
    >>> matches('customer:read', 'cust*')
    False
    """
    return _as_pattern(pattern).matches(permission)


def authorize(permission: str, granted_patterns: Iterable[PatternLike]) -> bool:
    """True if any granted pattern covers ``permission``. Empty grants deny."""
    return any(matches(permission, p) for p in granted_patterns)


def authorize_all(permissions: Iterable[str], granted_patterns: Sequence[PatternLike]) -> bool:
    return all(authorize(p, granted_patterns) for p in permissions)


def authorize_any(permissions: Iterable[str], granted_patterns: Sequence[PatternLike]) -> bool:
    return any(authorize(p, granted_patterns) for p in permissions)


def expand(pattern: PatternLike, all_permissions: Sequence[str]) -> List[str]:
    """List the registered permissions a pattern covers.

    Display only (role detail screens, audit output). Authorization decisions go
    through ``authorize``; a permission missing from ``all_permissions`` is still
    granted by a matching wildcard.
    """
    parsed = _as_pattern(pattern)
    if isinstance(parsed, ExactPermission):
        return [parsed.value] if parsed.value in all_permissions else []
    return [p for p in all_permissions if parsed.matches(p)]


__all__ = [
    'GlobalWildcard', 'ResourceWildcard', 'ExactPermission', 'Pattern', 'parse_pattern',
    'matches', 'authorize', 'authorize_all', 'authorize_any', 'expand',
]
