import importlib
import os
from datetime import datetime
from types import SimpleNamespace

import pytest


os.environ["SKIP_SCHEMA_UPDATES"] = "1"
app_module = importlib.import_module("app")
auth_module = importlib.import_module("auth")


def make_user(user_id=1, role="citizen", department=None, ward=None, **extra):
    user = {
        "id": user_id,
        "name": f"User {user_id}",
        "email": f"user{user_id}@city.gov",
        "role": role,
        "phone": None,
        "address": None,
        "department": department,
        "ward": ward,
        "profile_image": "",
        "is_active": True,
        "created_at": datetime(2026, 1, 5, 9, 0),
        "updated_at": datetime(2026, 1, 5, 9, 0),
    }
    user.update(extra)
    return user


def make_issue(issue_id=1, **extra):
    issue = {
        "id": issue_id,
        "title": "Broken streetlight",
        "description": "Out for a week",
        "category": "street_lighting",
        "priority": "medium",
        "status": "pending",
        "reported_by": 1,
        "reporter_name": "User 1",
        "reporter_email": "user1@city.gov",
        "reporter_phone": None,
        "assigned_to": None,
        "assignee_name": None,
        "assignee_email": None,
        "assignee_phone": None,
        "department": "Public Works",
        "address": "456 Main St",
        "latitude": 40.7,
        "longitude": -74.0,
        "images": [],
        "estimated_resolution_time": None,
        "actual_resolution_time": None,
        "feedback_rating": None,
        "feedback_comment": None,
        "feedback_provided_at": None,
        "upvotes": 0,
        "ward": "Ward 1",
        "contact_phone": None,
        "preferred_contact": None,
        "is_anonymous": False,
        "created_at": datetime(2026, 1, 10, 8, 0),
        "updated_at": datetime(2026, 1, 10, 8, 0),
    }
    issue.update(extra)
    return issue


class ModelsStub(SimpleNamespace):
    def __init__(self):
        super().__init__()
        self.calls = []
        self.users = {1: make_user()}
        self.issue = make_issue()
        self.update_result = True
        self.create_user = lambda **fields: self._record("create_user", **fields) or make_user(
            10, role=fields["role"], department=fields.get("department"), ward=fields.get("ward"),
            name=fields["name"], email=fields["email"],
        )
        self.authenticate_user = lambda email, password: self._record("authenticate_user", email=email) or self.users[1]
        self.get_user_by_id = lambda user_id: self.users.get(user_id)
        self.check_user_password = lambda user_id, password: password == "old-pass"
        self.update_user = lambda user_id, fields: self._record("update_user", user_id=user_id, fields=fields) or {
            **self.users[user_id], **{k: v for k, v in fields.items() if k != "password"}
        }
        self.get_users = lambda role=None, department=None: self._record("get_users", role=role, department=department) or list(self.users.values())
        self.find_department_for_category = lambda category: self._record("find_department_for_category", category=category) or "Public Works"
        self.create_issue = lambda data, reporter_id: self._record("create_issue", data=data, reporter_id=reporter_id) or 1
        self.get_issue_by_id = lambda issue_id: dict(self.issue) if self.issue and issue_id == self.issue["id"] else None
        self.get_issue_history = lambda issue_id: []
        self.list_issues = lambda user, filters, page, limit: self._record(
            "list_issues", user=user, filters=filters, page=page, limit=limit
        ) or ([dict(self.issue)], 1)
        self.update_issue = lambda issue_id, user, updates: self._record("update_issue", issue_id=issue_id, updates=updates) or self.update_result
        self.add_issue_feedback = lambda issue_id, user, rating, comment: self._record("add_issue_feedback", rating=rating, comment=comment)
        self.get_active_departments = lambda: []
        self.get_department_by_id = lambda department_id: None
        self.create_department = lambda *args: self._record("create_department", args=args) or 3
        self.get_dashboard_stats = lambda user: {"total": 0}

    def _record(self, _call, **data):
        self.calls.append((_call, data))
        return None

    def call_names(self):
        return [c[0] for c in self.calls]


@pytest.fixture
def client(monkeypatch, tmp_path):
    stub = ModelsStub()
    monkeypatch.setattr(app_module, "models", stub)
    monkeypatch.setattr(app_module, "ISSUE_IMAGE_DIR", str(tmp_path / "issue_images"))
    app_module.app.config["TESTING"] = True
    with app_module.app.test_client() as c:
        c.models_stub = stub
        yield c


def auth_header(user_id=1, role="citizen", department=None, ward=None, now=None):
    token = auth_module.create_token(
        {"id": user_id, "email": f"user{user_id}@city.gov", "role": role, "department": department, "ward": ward},
        now=now,
    )
    return {"Authorization": f"Bearer {token}"}
