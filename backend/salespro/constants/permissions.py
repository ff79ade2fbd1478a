"""Permission registry and role presets.

Permissions are `resource:action` strings mapped to API capabilities. Extend
cautiously; never rename a code silently, roles store them verbatim. Wildcard
patterns ('*', 'resource:*') are valid on roles but are not registry members.
"""
from __future__ import annotations
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, List, Mapping

from salespro.authz.matcher import expand

PERMISSION_RE = re.compile(r'^[a-z_]+:[a-z_]+$')
PLATFORM_RESOURCE = 'platform'


@dataclass(frozen=True)
class PermissionMeta:
    label: str
    category: str
    description: str


_REGISTRY: Dict[str, PermissionMeta] = {
    # App access
    'app:dashboard': PermissionMeta('Dashboard App', 'Apps', 'Access the web dashboard application'),
    'app:salespro': PermissionMeta('SalesPro App', 'Apps', 'Access the SalesPro mobile application'),
    # Customers
    'customer:read': PermissionMeta('View Customers', 'Customers', 'View customer list and details'),
    'customer:create': PermissionMeta('Create Customers', 'Customers', 'Add new customers to the system'),
    'customer:update': PermissionMeta('Edit Customers', 'Customers', 'Modify existing customer information'),
    'customer:delete': PermissionMeta('Delete Customers', 'Customers', 'Remove customers from the system'),
    # Users
    'user:read': PermissionMeta('View Users', 'Users', 'View user list and profiles'),
    'user:create': PermissionMeta('Create Users', 'Users', 'Add new users to the company'),
    'user:update': PermissionMeta('Edit Users', 'Users', 'Modify user profiles and settings'),
    'user:delete': PermissionMeta('Delete Users', 'Users', 'Soft delete users from the company'),
    'user:activate': PermissionMeta('Activate/Deactivate Users', 'Users', 'Enable or disable user accounts'),
    # Offices
    'office:read': PermissionMeta('View Offices', 'Offices', 'View office list and details'),
    'office:create': PermissionMeta('Create Offices', 'Offices', 'Add new offices to the company'),
    'office:update': PermissionMeta('Edit Offices', 'Offices', 'Modify office settings and information'),
    'office:delete': PermissionMeta('Delete Offices', 'Offices', 'Remove offices from the company'),
    # Roles
    'role:read': PermissionMeta('View Roles', 'Roles & Permissions', 'View available roles and their permissions'),
    'role:create': PermissionMeta('Create Roles', 'Roles & Permissions', 'Create custom roles for the company'),
    'role:update': PermissionMeta('Edit Roles', 'Roles & Permissions', 'Modify role permissions and settings'),
    'role:delete': PermissionMeta('Delete Roles', 'Roles & Permissions', 'Remove custom roles from the company'),
    'role:assign': PermissionMeta('Assign Roles', 'Roles & Permissions', 'Assign or revoke user roles'),
    # Reports
    'report:read': PermissionMeta('View Reports', 'Reports', 'Access reports and analytics dashboards'),
    'report:export': PermissionMeta('Export Reports', 'Reports', 'Export reports to CSV, PDF, or other formats'),
    # Settings
    'settings:read': PermissionMeta('View Settings', 'Settings', 'View company and application settings'),
    'settings:update': PermissionMeta('Manage Settings', 'Settings', 'Modify company and application settings'),
    # Company
    'company:read': PermissionMeta('View Company Info', 'Company', 'View company profile and subscription details'),
    'company:update': PermissionMeta('Manage Company', 'Company', 'Update company profile and subscription settings'),
    # Files
    'file:read': PermissionMeta('View Files', 'Files', 'View and download files'),
    'file:create': PermissionMeta('Upload Files', 'Files', 'Upload new files to the system'),
    'file:update': PermissionMeta('Edit Files', 'Files', 'Update file metadata and visibility'),
    'file:delete': PermissionMeta('Delete Files', 'Files', 'Delete files from the system'),
    # Data migration
    'data:migration': PermissionMeta('Data Migration', 'Data Migration', 'Import data from legacy systems'),
    # Price guide
    'price_guide:import_export': PermissionMeta(
        'Price Guide Import/Export', 'Price Guide', 'Export and import price guide pricing data via spreadsheet'
    ),
    # Platform (internal users only)
    'platform:admin': PermissionMeta('Platform Admin', 'Platform', 'Full platform administration access'),
    'platform:view_companies': PermissionMeta('View All Companies', 'Platform', 'View list of all companies in the platform'),
    'platform:create_company': PermissionMeta('Create Companies', 'Platform', 'Create new companies in the platform'),
    'platform:update_company': PermissionMeta('Update Companies', 'Platform', 'Update company settings and details'),
    'platform:switch_company': PermissionMeta('Switch Company', 'Platform', 'Switch active company context'),
    'platform:view_audit_logs': PermissionMeta('View Audit Logs', 'Platform', 'Access platform-wide audit and activity logs'),
    'platform:manage_internal_users': PermissionMeta(
        'Manage Internal Users', 'Platform', 'Create, edit, and manage internal platform users'
    ),
}

# Loaded once at import; read-only for the life of the process.
PERMISSION_REGISTRY: Mapping[str, PermissionMeta] = MappingProxyType(_REGISTRY)
ALL_PERMISSION_CODES: tuple = tuple(_REGISTRY)


def is_valid_permission(code: str) -> bool:
    return code in PERMISSION_REGISTRY


def is_platform_permission(code: str) -> bool:
    return code.startswith(PLATFORM_RESOURCE + ':')


def platform_permissions() -> List[str]:
    return [c for c in ALL_PERMISSION_CODES if is_platform_permission(c)]


def company_permissions() -> List[str]:
    return [c for c in ALL_PERMISSION_CODES if not is_platform_permission(c)]


def read_only_permissions() -> List[str]:
    return [c for c in company_permissions() if c.endswith(':read')]


def permissions_by_category() -> Dict[str, List[str]]:
    grouped: Dict[str, List[str]] = {}
    for code, meta in PERMISSION_REGISTRY.items():
        grouped.setdefault(meta.category, []).append(code)
    return grouped


def expand_patterns(patterns) -> List[str]:
    """Registered permissions covered by a list of role patterns (display only), registry order."""
    covered = set()
    for pattern in patterns:
        covered.update(expand(pattern, ALL_PERMISSION_CODES))
    return [c for c in ALL_PERMISSION_CODES if c in covered]


# Role presets used by the seed script. Platform roles carry a second list that
# applies once the internal user has switched into a company.
ROLE_PRESETS: Dict[str, Dict] = {
    'superUser': {
        'type': 'system',
        'display_name': 'Super User',
        'description': 'Full system access. Can do everything.',
        'is_default': False,
        'permissions': ['*'],
    },
    'admin': {
        'type': 'system',
        'display_name': 'Administrator',
        'description': 'Company administrator with full access to manage users, roles, and settings.',
        'is_default': False,
        'permissions': [
            'app:dashboard', 'app:salespro',
            'customer:*', 'user:*', 'office:*', 'role:*', 'settings:*', 'company:*',
            'report:read', 'report:export',
        ],
    },
    'salesRep': {
        'type': 'system',
        'display_name': 'Sales Representative',
        'description': 'Standard sales user with access to customers and reports.',
        'is_default': True,
        'permissions': [
            'app:salespro',
            'customer:read', 'customer:create', 'customer:update',
            'office:read', 'report:read', 'settings:read',
        ],
    },
    'viewer': {
        'type': 'system',
        'display_name': 'Viewer',
        'description': 'Read-only access to customers and reports.',
        'is_default': False,
        'permissions': ['app:dashboard', 'customer:read', 'office:read', 'report:read'],
    },
    'platformAdmin': {
        'type': 'platform',
        'display_name': 'Platform Administrator',
        'description': 'Full platform access. Can manage all companies and internal users.',
        'is_default': False,
        'permissions': platform_permissions(),
        'company_permissions': ['*'],
    },
    'platformSupport': {
        'type': 'platform',
        'display_name': 'Platform Support',
        'description': 'Read-only access to all companies for customer support purposes.',
        'is_default': False,
        'permissions': ['platform:view_companies', 'platform:switch_company', 'platform:view_audit_logs'],
        'company_permissions': ['app:dashboard', 'app:salespro'] + read_only_permissions(),
    },
    'platformDeveloper': {
        'type': 'platform',
        'display_name': 'Platform Developer',
        'description': 'Developer access with read permissions across companies.',
        'is_default': False,
        'permissions': ['platform:view_companies', 'platform:switch_company'],
        'company_permissions': [
            'app:dashboard', 'app:salespro',
            'customer:read', 'user:read', 'office:read', 'role:read', 'settings:read', 'report:read',
        ],
    },
}
