import pytest
from werkzeug.exceptions import BadRequest
from salespro.utils.listing import normalize_pagination, DEFAULT_LIMIT, MAX_LIMIT
from salespro.utils.validation import (
    pattern_problem,
    validate_display_name,
    validate_permission_patterns,
    validate_role_name,
)


def test_pattern_problem():
    assert pattern_problem('*') is None
    assert pattern_problem('customer:*') is None
    assert pattern_problem('customer:read') is None
    assert pattern_problem('') == 'must be a non-empty string'
    assert pattern_problem(None) == 'must be a non-empty string'
    assert pattern_problem('widget:*') == "unknown resource 'widget'"
    assert pattern_problem('customer:fly') == 'unknown permission'
    assert pattern_problem('cust*') == 'unknown permission'


def test_validate_permission_patterns_dedupes_in_order():
    assert validate_permission_patterns(['office:read', 'customer:*', 'office:read']) == ['office:read', 'customer:*']
    assert validate_permission_patterns([]) == []


def test_validate_permission_patterns_platform_split():
    assert validate_permission_patterns(['platform:*'], platform=True) == ['platform:*']
    with pytest.raises(BadRequest):
        validate_permission_patterns(['customer:read'], platform=True)
    with pytest.raises(BadRequest):
        validate_permission_patterns(['platform:admin'], platform=False)
    assert validate_permission_patterns(['*'], platform=False) == ['*']
    # no restriction either way by default
    assert validate_permission_patterns(['platform:admin', 'customer:read']) == ['platform:admin', 'customer:read']


def test_validate_permission_patterns_rejects_non_lists():
    with pytest.raises(BadRequest) as exc:
        validate_permission_patterns('customer:read', 'company_permissions')
    assert 'company_permissions' in exc.value.description


def test_role_and_display_names():
    assert validate_role_name('salesRep') == 'salesRep'
    assert validate_role_name('a-b_c1') == 'a-b_c1'
    for bad in (None, '', '1abc', '-abc', 'a b', 'x' * 51):
        with pytest.raises(BadRequest):
            validate_role_name(bad)
    assert validate_display_name('  Closer ') == 'Closer'
    for bad in (None, '   ', 'x' * 101, 5):
        with pytest.raises(BadRequest):
            validate_display_name(bad)


def test_normalize_pagination():
    assert normalize_pagination(None, None) == (DEFAULT_LIMIT, 0)
    assert normalize_pagination('500', '-3') == (MAX_LIMIT, 0)
    assert normalize_pagination('0', '7') == (1, 7)
    with pytest.raises(ValueError):
        normalize_pagination('ten', None)
