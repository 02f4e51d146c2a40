"""Role policy table and issue status state machine."""
from datetime import datetime

from errors import PermissionDenied, ValidationError

# ========================================
# ROLES & ENUMS
# ========================================

ROLES = (
    'citizen',
    'field_worker',
    'department_admin',
    'regional_admin',
    'city_admin',
    'super_admin',
)
ROLES_REQUIRING_DEPARTMENT = {'field_worker', 'department_admin'}
ROLES_REQUIRING_WARD = {'regional_admin'}

ISSUE_STATUSES = ('pending', 'assigned', 'in_progress', 'resolved', 'closed', 'rejected')
ISSUE_PRIORITIES = ('low', 'medium', 'high', 'urgent')
ISSUE_CATEGORIES = (
    'water_supply',
    'sanitation',
    'road_maintenance',
    'street_lighting',
    'drainage',
    'traffic',
    'public_safety',
    'parks_recreation',
    'noise_pollution',
    'air_quality',
    'electricity',
    'other',
)
# Older clients still send the department-level categories; they are stored as given.
LEGACY_ISSUE_CATEGORIES = ('infrastructure', 'utilities', 'environment', 'safety')
VALID_ISSUE_CATEGORIES = set(ISSUE_CATEGORIES) | set(LEGACY_ISSUE_CATEGORIES)
DEPARTMENT_CATEGORIES = ('sanitation', 'infrastructure', 'utilities', 'traffic', 'environment', 'safety', 'other')
# Issue category -> the department category that owns it.
DEPARTMENT_CATEGORY_FOR_ISSUE = {
    'water_supply': 'utilities',
    'sanitation': 'sanitation',
    'road_maintenance': 'infrastructure',
    'street_lighting': 'infrastructure',
    'drainage': 'sanitation',
    'traffic': 'traffic',
    'public_safety': 'safety',
    'parks_recreation': 'environment',
    'noise_pollution': 'environment',
    'air_quality': 'environment',
    'electricity': 'utilities',
    'other': 'other',
}

ANALYTICS_EVENT_TYPES = ('issue_created', 'issue_resolved', 'user_registered', 'department_activity')
ANALYTICS_ENTITY_TYPES = ('Issue', 'User', 'Department')

# ========================================
# POLICY TABLE
# ========================================

ISSUE_SCOPES = {
    'citizen': {
        'list': ('reporter',),
        'view': ('reporter',),
        'update': (),
    },
    'field_worker': {
        'list': ('assignee', 'department_pending'),
        'view': ('assignee', 'department'),
        'update': ('assignee',),
    },
    'department_admin': {
        'list': ('department',),
        'view': ('department',),
        'update': ('department',),
    },
    'regional_admin': {
        'list': ('ward',),
        'view': ('ward',),
        'update': ('ward',),
    },
    'city_admin': {
        'list': ('all',),
        'view': ('all',),
        'update': ('all',),
    },
    'super_admin': {
        'list': ('all',),
        'view': ('all',),
        'update': ('all',),
    },
}

CAPABILITIES = {
    'create_issue': {'citizen'},
    'give_feedback': {'citizen'},
    'assign_issue': {'department_admin', 'regional_admin', 'city_admin', 'super_admin'},
    'list_departments': {'department_admin', 'regional_admin', 'city_admin', 'super_admin'},
    'manage_departments': {'city_admin', 'super_admin'},
    'list_users': {'department_admin', 'city_admin', 'super_admin'},
    'manage_users': {'city_admin', 'super_admin'},
}

# Query filters each role may apply on top of its scope.
LIST_FILTER_ROLES = {
    'department': {'city_admin', 'super_admin'},
    'ward': {'regional_admin', 'city_admin', 'super_admin'},
    'assignedTo': {'department_admin', 'city_admin', 'super_admin'},
}


def has_capability(role, capability):
    return role in CAPABILITIES.get(capability, set())


def roles_with(capability):
    return tuple(sorted(CAPABILITIES.get(capability, set())))


def department_category_for(category):
    if category in DEPARTMENT_CATEGORIES:
        return category
    return DEPARTMENT_CATEGORY_FOR_ISSUE.get(category, 'other')


def issue_scopes(role, action):
    return ISSUE_SCOPES.get(role, {}).get(action, ())


def _same_id(left, right):
    if left is None or right is None:
        return False
    return str(left) == str(right)


def scope_matches(scope, user, issue):
    if scope == 'all':
        return True
    if scope == 'reporter':
        return _same_id(issue.get('reported_by'), user.get('userId'))
    if scope == 'assignee':
        return _same_id(issue.get('assigned_to'), user.get('userId'))
    if scope == 'department':
        return bool(user.get('department')) and issue.get('department') == user.get('department')
    if scope == 'department_pending':
        return scope_matches('department', user, issue) and issue.get('status') == 'pending'
    if scope == 'ward':
        return bool(user.get('ward')) and issue.get('ward') == user.get('ward')
    return False


def can_access_issue(user, issue, action):
    return any(scope_matches(scope, user, issue) for scope in issue_scopes(user.get('role'), action))


def can_view_issue(user, issue):
    return can_access_issue(user, issue, 'view')


def can_update_issue(user, issue):
    return can_access_issue(user, issue, 'update')


# ========================================
# STATUS STATE MACHINE
# ========================================

ALLOWED_TRANSITIONS = {
    'pending': {'assigned', 'in_progress', 'resolved', 'rejected'},
    'assigned': {'pending', 'in_progress', 'resolved', 'rejected'},
    'in_progress': {'assigned', 'resolved', 'rejected'},
    'resolved': {'in_progress', 'closed'},
    'rejected': {'pending', 'closed'},
    'closed': set(),
}
TERMINAL_STATUSES = {status for status, targets in ALLOWED_TRANSITIONS.items() if not targets}
FEEDBACK_STATUSES = {'resolved', 'closed'}


def can_transition(current, target):
    return target in ALLOWED_TRANSITIONS.get(current, set())


def validate_transition(current, target):
    if current in TERMINAL_STATUSES:
        raise ValidationError(f'Issue is {current} and can no longer be updated')
    if not can_transition(current, target):
        raise ValidationError(f'Invalid status transition from {current} to {target}')


def plan_issue_update(issue, updates, user, assignee=None, last_entry=None, now=None):
    """Work out what a PATCH does to ``issue`` without touching the store.

    ``updates`` is the validated payload (``status``, ``assignedTo``,
    ``priority``, ``estimatedResolutionTime`` as a datetime, ``comment``).
    ``assignee`` is the user row for ``assignedTo`` if one was requested and
    found, ``last_entry`` the newest history row of the issue.

    Returns ``None`` when the request would not change anything (a repeated
    submission), else a dict with the column ``fields`` to set, the
    ``history`` entry to append and the resolution bookkeeping.
    """
    now = now or datetime.now()
    actor_id = user.get('userId')
    current = issue['status']
    target = updates.get('status')
    fields = {}

    if updates.get('assignedTo') is not None:
        if not has_capability(user.get('role'), 'assign_issue'):
            raise PermissionDenied('Only administrators can assign issues')
        if (
            not assignee
            or assignee.get('role') != 'field_worker'
            or not assignee.get('is_active', True)
            or assignee.get('department') != issue.get('department')
        ):
            raise ValidationError('Invalid assignee')
        if not _same_id(assignee['id'], issue.get('assigned_to')):
            fields['assigned_to'] = assignee['id']
            if target is None:
                target = 'assigned'

    resolved = False
    if target and target != current:
        validate_transition(current, target)
        fields['status'] = target
        if target == 'resolved':
            fields['actual_resolution_time'] = now
            resolved = True
        elif current == 'resolved':
            fields['actual_resolution_time'] = None

    priority = updates.get('priority')
    if priority and priority != issue.get('priority'):
        fields['priority'] = priority

    eta = updates.get('estimatedResolutionTime')
    if eta and eta != issue.get('estimated_resolution_time'):
        fields['estimated_resolution_time'] = eta

    new_status = fields.get('status', current)
    comment = updates.get('comment') or None

    if not fields:
        if not comment:
            return None
        if (
            last_entry
            and last_entry.get('status') == new_status
            and _same_id(last_entry.get('changed_by'), actor_id)
            and (last_entry.get('comment') or None) == comment
        ):
            return None

    if current in TERMINAL_STATUSES:
        raise ValidationError(f'Issue is {current} and can no longer be updated')

    resolution_hours = None
    if resolved and issue.get('created_at'):
        resolution_hours = round((now - issue['created_at']).total_seconds() / 3600, 2)

    return {
        'fields': fields,
        'history': {
            'status': new_status,
            'changed_by': actor_id,
            'changed_at': now,
            'comment': comment,
        },
        'resolved': resolved,
        'resolution_hours': resolution_hours,
    }
