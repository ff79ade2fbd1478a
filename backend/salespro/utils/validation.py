"""Request payload validation for role writes.

Stored patterns that fail these checks would simply never match; rejecting them
at write time keeps role data honest.
"""
from __future__ import annotations
import re
from typing import Any, List, Optional
from flask import abort

from salespro.authz.matcher import ExactPermission, ResourceWildcard, parse_pattern
from salespro.constants.permissions import (
    ALL_PERMISSION_CODES,
    is_platform_permission,
    is_valid_permission,
)

ROLE_NAME_RE = re.compile(r'^[a-zA-Z][a-zA-Z0-9_-]*$')
_KNOWN_RESOURCES = {c.split(':', 1)[0] for c in ALL_PERMISSION_CODES}


def pattern_problem(pattern: Any) -> Optional[str]:
    """Why ``pattern`` is not a usable role pattern, or None when it is."""
    if not isinstance(pattern, str) or not pattern:
        return 'must be a non-empty string'
    parsed = parse_pattern(pattern)
    if isinstance(parsed, ResourceWildcard):
        if parsed.resource not in _KNOWN_RESOURCES:
            return f"unknown resource '{parsed.resource}'"
        return None
    if isinstance(parsed, ExactPermission) and not is_valid_permission(pattern):
        return 'unknown permission'
    return None


def validate_permission_patterns(patterns: Any, field_name: str = 'permissions', *, platform: Optional[bool] = None) -> List[str]:
    """Validate a list of role patterns, aborting with 400 on the first problem.

    platform=True requires every entry to be a platform permission, platform=False
    forbids platform permissions (the global wildcard is allowed there).
    """
    if not isinstance(patterns, list):
        abort(400, description=f'{field_name} must be a list of strings')
    for p in patterns:
        problem = pattern_problem(p)
        if problem:
            abort(400, description=f"{field_name}: '{p}' {problem}")
        if platform is True and not is_platform_permission(p):
            abort(400, description=f"{field_name}: '{p}' is not a platform permission")
        if platform is False and is_platform_permission(p):
            abort(400, description=f"{field_name}: '{p}' is a platform permission")
    # keep first occurrence order
    return list(dict.fromkeys(patterns))


def validate_role_name(name: Any) -> str:
    if not isinstance(name, str) or not name:
        abort(400, description='name required')
    if len(name) > 50 or not ROLE_NAME_RE.match(name):
        abort(400, description='name must start with a letter and contain only letters, numbers, underscores, and hyphens')
    return name


def validate_display_name(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        abort(400, description='display_name required')
    if len(value) > 100:
        abort(400, description='display_name must be 100 characters or less')
    return value.strip()


__all__ = ['pattern_problem', 'validate_permission_patterns', 'validate_role_name', 'validate_display_name']
