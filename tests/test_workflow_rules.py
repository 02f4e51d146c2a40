from datetime import datetime

import pytest

import workflow
from errors import PermissionDenied, ValidationError


NOW = datetime(2026, 1, 12, 18, 0)
ADMIN = {"userId": "9", "role": "city_admin"}
DEPT_ADMIN = {"userId": "3", "role": "department_admin", "department": "Sanitation"}
WORKER = {"userId": "5", "role": "field_worker", "department": "Sanitation"}
VALID_ASSIGNEE = {"id": 5, "role": "field_worker", "department": "Sanitation", "is_active": True}


def _issue(**extra):
    issue = {
        "id": 1,
        "status": "pending",
        "priority": "medium",
        "department": "Sanitation",
        "ward": "Ward 1",
        "reported_by": 1,
        "assigned_to": None,
        "estimated_resolution_time": None,
        "created_at": datetime(2026, 1, 12, 6, 0),
    }
    issue.update(extra)
    return issue


def test_policy_table_scopes():
    issue = _issue(assigned_to=5)
    assert workflow.can_view_issue({"userId": "1", "role": "citizen"}, issue)
    assert not workflow.can_update_issue({"userId": "1", "role": "citizen"}, issue)
    assert not workflow.can_view_issue({"userId": "2", "role": "citizen"}, issue)

    assert workflow.can_update_issue(WORKER, issue)
    other_worker = {"userId": "6", "role": "field_worker", "department": "Sanitation"}
    assert workflow.can_view_issue(other_worker, issue)
    assert not workflow.can_update_issue(other_worker, issue)
    assert workflow.can_access_issue(other_worker, issue, "list")
    assert not workflow.can_access_issue(other_worker, _issue(status="assigned", assigned_to=5), "list")

    assert workflow.can_update_issue(DEPT_ADMIN, issue)
    assert not workflow.can_view_issue({"userId": "3", "role": "department_admin"}, issue)
    assert workflow.can_update_issue({"userId": "4", "role": "regional_admin", "ward": "Ward 1"}, issue)
    assert not workflow.can_view_issue({"userId": "4", "role": "regional_admin", "ward": "Ward 2"}, issue)
    assert workflow.can_update_issue({"userId": "8", "role": "super_admin"}, issue)
    assert not workflow.can_view_issue({"userId": "8", "role": "unknown"}, issue)


def test_capabilities():
    assert workflow.roles_with("create_issue") == ("citizen",)
    assert not workflow.has_capability("field_worker", "assign_issue")
    assert workflow.has_capability("regional_admin", "assign_issue")
    assert workflow.has_capability("department_admin", "list_users")
    assert not workflow.has_capability("department_admin", "manage_users")
    assert not workflow.has_capability("city_admin", "no_such_capability")


def test_department_category_mapping():
    assert workflow.department_category_for("road_maintenance") == "infrastructure"
    assert workflow.department_category_for("utilities") == "utilities"
    assert workflow.department_category_for("mystery") == "other"


def test_transitions():
    assert workflow.can_transition("pending", "assigned")
    assert workflow.can_transition("resolved", "in_progress")
    assert not workflow.can_transition("pending", "closed")
    assert not workflow.can_transition("closed", "pending")
    assert workflow.TERMINAL_STATUSES == {"closed"}
    with pytest.raises(ValidationError, match="no longer"):
        workflow.validate_transition("closed", "resolved")
    with pytest.raises(ValidationError, match="pending to closed"):
        workflow.validate_transition("pending", "closed")


def test_plan_status_change_and_history():
    plan = workflow.plan_issue_update(_issue(status="assigned", assigned_to=5), {"status": "in_progress", "comment": "On site"}, WORKER, now=NOW)
    assert plan["fields"] == {"status": "in_progress"}
    assert plan["history"] == {"status": "in_progress", "changed_by": "5", "changed_at": NOW, "comment": "On site"}
    assert plan["resolved"] is False


def test_plan_is_idempotent():
    issue = _issue(status="in_progress", assigned_to=5)
    assert workflow.plan_issue_update(issue, {"status": "in_progress"}, WORKER, now=NOW) is None
    assert workflow.plan_issue_update(issue, {}, WORKER, now=NOW) is None

    last = {"status": "in_progress", "changed_by": 5, "comment": "Parts ordered"}
    repeat = {"status": "in_progress", "comment": "Parts ordered"}
    assert workflow.plan_issue_update(issue, repeat, WORKER, last_entry=last, now=NOW) is None

    # a new comment on an unchanged issue is still recorded
    plan = workflow.plan_issue_update(issue, {"comment": "Crew arrived"}, WORKER, last_entry=last, now=NOW)
    assert plan["fields"] == {}
    assert plan["history"]["comment"] == "Crew arrived"


def test_plan_resolution_stamp_and_reopen():
    plan = workflow.plan_issue_update(_issue(status="in_progress"), {"status": "resolved"}, ADMIN, now=NOW)
    assert plan["fields"] == {"status": "resolved", "actual_resolution_time": NOW}
    assert plan["resolved"] is True
    assert plan["resolution_hours"] == 12.0

    plan = workflow.plan_issue_update(_issue(status="resolved"), {"status": "in_progress"}, ADMIN, now=NOW)
    assert plan["fields"] == {"status": "in_progress", "actual_resolution_time": None}
    assert plan["resolved"] is False


def test_plan_assignment_rules():
    plan = workflow.plan_issue_update(_issue(), {"assignedTo": 5}, DEPT_ADMIN, assignee=VALID_ASSIGNEE, now=NOW)
    assert plan["fields"] == {"assigned_to": 5, "status": "assigned"}

    plan = workflow.plan_issue_update(_issue(), {"assignedTo": 5, "status": "in_progress"}, DEPT_ADMIN, assignee=VALID_ASSIGNEE, now=NOW)
    assert plan["fields"]["status"] == "in_progress"

    with pytest.raises(PermissionDenied):
        workflow.plan_issue_update(_issue(assigned_to=5), {"assignedTo": 5}, WORKER, assignee=VALID_ASSIGNEE, now=NOW)

    for bad in (None, dict(VALID_ASSIGNEE, role="citizen"), dict(VALID_ASSIGNEE, department="Roads"),
                dict(VALID_ASSIGNEE, is_active=False)):
        with pytest.raises(ValidationError, match="Invalid assignee"):
            workflow.plan_issue_update(_issue(), {"assignedTo": 5}, DEPT_ADMIN, assignee=bad, now=NOW)


def test_plan_priority_and_eta():
    eta = datetime(2026, 1, 20, 12, 0)
    plan = workflow.plan_issue_update(_issue(), {"priority": "urgent", "estimatedResolutionTime": eta}, ADMIN, now=NOW)
    assert plan["fields"] == {"priority": "urgent", "estimated_resolution_time": eta}
    assert plan["history"]["status"] == "pending"
    assert workflow.plan_issue_update(_issue(priority="urgent"), {"priority": "urgent"}, ADMIN, now=NOW) is None


def test_plan_rejects_closed_and_bad_transitions():
    with pytest.raises(ValidationError):
        workflow.plan_issue_update(_issue(status="closed"), {"status": "pending"}, ADMIN, now=NOW)
    with pytest.raises(ValidationError):
        workflow.plan_issue_update(_issue(status="closed"), {"comment": "reopen please"}, ADMIN, now=NOW)
    with pytest.raises(ValidationError):
        workflow.plan_issue_update(_issue(status="pending"), {"status": "closed"}, ADMIN, now=NOW)
    assert workflow.plan_issue_update(_issue(status="closed"), {"status": "closed"}, ADMIN, now=NOW) is None


def test_plan_repeat_assignment_keeps_status():
    resolved = _issue(status="resolved", assigned_to=5)
    assert workflow.plan_issue_update(resolved, {"assignedTo": 5}, DEPT_ADMIN, assignee=VALID_ASSIGNEE, now=NOW) is None

    in_progress = _issue(status="in_progress", assigned_to=5)
    assert workflow.plan_issue_update(in_progress, {"assignedTo": 5}, DEPT_ADMIN, assignee=VALID_ASSIGNEE, now=NOW) is None

    plan = workflow.plan_issue_update(in_progress, {"assignedTo": 5, "comment": "Still on it"}, DEPT_ADMIN, assignee=VALID_ASSIGNEE, now=NOW)
    assert plan["fields"] == {}
    assert plan["history"]["status"] == "in_progress"
