from flask import Blueprint
from salespro.constants.permissions import PERMISSION_REGISTRY, permissions_by_category
from salespro.decorators.auth import require_permission

perms_bp = Blueprint('permissions', __name__)


@perms_bp.get('')
@require_permission('role:read')
def list_permissions():
    """Registered permissions grouped by category, for role editors."""
    categories = []
    for category, codes in permissions_by_category().items():
        categories.append({
            'category': category,
            'permissions': [
                {
                    'code': code,
                    'label': PERMISSION_REGISTRY[code].label,
                    'description': PERMISSION_REGISTRY[code].description,
                }
                for code in codes
            ],
        })
    return {'data': categories, 'total': len(PERMISSION_REGISTRY)}
