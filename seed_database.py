"""
Seed demo departments, users and issues
Run after DB setup:
    python seed_database.py
Existing rows with the same email / department name are updated in place.
"""
from datetime import timedelta

import psycopg2
from psycopg2.extras import Json
from werkzeug.security import generate_password_hash
from config import Config
import models

config = Config()


# Password for every seeded account. Change after first login.
DEFAULT_PASSWORD = "demo123"
DEMO_WARD = "Ward 1"

# name, email, role, phone, department, ward, address
USER_DEFS = [
    ("John Citizen", "citizen1@email.com", "citizen", "+1-555-0101", None, DEMO_WARD, "123 Main St, Downtown"),
    ("Mike Worker", "worker1@contractor.com", "field_worker", "+1-555-0102", "Sanitation", None, None),
    ("Sarah Admin", "sanitation.head@city.gov", "department_admin", "+1-555-0103", "Sanitation", None, None),
    ("Regional Manager", "ward1.admin@city.gov", "regional_admin", "+1-555-0104", None, DEMO_WARD, None),
    ("City Administrator", "admin@city.gov", "city_admin", "+1-555-0105", None, None, None),
]

# name, description, categories, contact email, contact phone
DEPARTMENT_DEFS = [
    ("Sanitation", "Waste management and street cleaning services",
     ["sanitation", "environment"], "sanitation@city.gov", "+1-555-0201"),
    ("Public Works", "Infrastructure maintenance and repairs",
     ["infrastructure", "utilities"], "publicworks@city.gov", "+1-555-0202"),
    ("Transportation", "Traffic management and road maintenance",
     ["traffic", "safety"], "transportation@city.gov", "+1-555-0203"),
]


def upsert_user(cur, name, email, role, phone, department, ward, address):
    cur.execute("SELECT id FROM users WHERE email = %s", (email,))
    row = cur.fetchone()
    password_hash = generate_password_hash(DEFAULT_PASSWORD)

    if row:
        cur.execute(
            """
            UPDATE users
            SET name = %s, role = %s, phone = %s, department = %s, ward = %s, address = %s,
                password_hash = %s, is_active = TRUE, updated_at = CURRENT_TIMESTAMP
            WHERE id = %s
            """,
            (name, role, phone, department, ward, address, password_hash, row[0]),
        )
        return row[0], "updated"

    cur.execute(
        """
        INSERT INTO users (name, email, password_hash, role, phone, department, ward, address, is_active)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, TRUE)
        RETURNING id
        """,
        (name, email, password_hash, role, phone, department, ward, address),
    )
    user_id = cur.fetchone()[0]
    record_event(cur, "user_registered", user_id, "User", {"userRole": role, "department": department, "ward": ward})
    return user_id, "created"


def upsert_department(cur, name, description, categories, contact_email, contact_phone, head_id, worker_ids):
    cur.execute("SELECT id FROM departments WHERE name = %s", (name,))
    row = cur.fetchone()
    if row:
        department_id = row[0]
        cur.execute(
            """
            UPDATE departments
            SET description = %s, categories = %s, head_id = %s, contact_email = %s,
                contact_phone = %s, is_active = TRUE, updated_at = CURRENT_TIMESTAMP
            WHERE id = %s
            """,
            (description, categories, head_id, contact_email, contact_phone, department_id),
        )
        result = "updated"
    else:
        cur.execute(
            """
            INSERT INTO departments (name, description, categories, head_id, contact_email, contact_phone)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING id
            """,
            (name, description, categories, head_id, contact_email, contact_phone),
        )
        department_id = cur.fetchone()[0]
        result = "created"

    for worker_id in worker_ids:
        cur.execute(
            """
            INSERT INTO department_workers (department_id, user_id) VALUES (%s, %s)
            ON CONFLICT DO NOTHING
            """,
            (department_id, worker_id),
        )
    return result


def record_event(cur, event_type, entity_id, entity_type, metadata, timestamp=None):
    payload = {k: v for k, v in metadata.items() if v is not None}
    cur.execute(
        """
        INSERT INTO analytics (type, entity_id, entity_type, metadata, timestamp)
        VALUES (%s, %s, %s, %s, COALESCE(%s, CURRENT_TIMESTAMP))
        """,
        (event_type, entity_id, entity_type, Json(payload), timestamp),
    )


def insert_issue(cur, issue, history):
    cur.execute("SELECT id FROM issues WHERE title = %s AND reported_by = %s", (issue["title"], issue["reported_by"]))
    if cur.fetchone():
        return None

    columns = list(issue)
    cur.execute(
        f"INSERT INTO issues ({', '.join(columns)}) VALUES ({', '.join(['%s'] * len(columns))}) RETURNING id",
        [issue[c] for c in columns],
    )
    issue_id = cur.fetchone()[0]
    for status, changed_by, changed_at, comment in history:
        cur.execute(
            """
            INSERT INTO issue_history (issue_id, status, changed_by, changed_at, comment)
            VALUES (%s, %s, %s, %s, %s)
            """,
            (issue_id, status, changed_by, changed_at, comment),
        )
    return issue_id


def seed_issues(cur, users):
    cur.execute("SELECT LOCALTIMESTAMP")
    now = cur.fetchone()[0]
    citizen = users["citizen"]
    worker = users["field_worker"]
    dept_admin = users["department_admin"]
    created = 0

    issue_id = insert_issue(cur, {
        "title": "Broken streetlight on Main Street",
        "created_at": now - timedelta(days=2),
        "description": "The streetlight near the community center has been out for several days, "
                       "creating safety concerns for pedestrians at night.",
        "category": "street_lighting",
        "priority": "high",
        "status": "pending",
        "reported_by": citizen,
        "department": "Public Works",
        "address": "456 Main St, Downtown",
        "latitude": 40.7128,
        "longitude": -74.0060,
        "ward": DEMO_WARD,
    }, [
        ("pending", citizen, now - timedelta(days=2), "Issue reported by citizen"),
    ])
    if issue_id:
        created += 1
        record_event(cur, "issue_created", issue_id, "Issue", {
            "category": "street_lighting", "department": "Public Works", "ward": DEMO_WARD, "priority": "high",
        }, now - timedelta(days=2))

    issue_id = insert_issue(cur, {
        "title": "Garbage not collected for 3 days",
        "created_at": now - timedelta(days=2),
        "description": "Our neighborhood garbage bins have not been emptied for three days. "
                       "The bins are overflowing and attracting pests.",
        "category": "sanitation",
        "priority": "urgent",
        "status": "assigned",
        "reported_by": citizen,
        "assigned_to": worker,
        "department": "Sanitation",
        "address": "789 Oak Avenue, Suburb",
        "latitude": 40.7589,
        "longitude": -73.9851,
        "ward": DEMO_WARD,
    }, [
        ("pending", citizen, now - timedelta(days=2), "Issue reported by citizen"),
        ("assigned", dept_admin, now - timedelta(days=1), "Assigned to field worker for immediate attention"),
    ])
    if issue_id:
        created += 1

    issue_id = insert_issue(cur, {
        "title": "Pothole causing traffic issues",
        "created_at": now - timedelta(days=5),
        "description": "Large pothole on Elm Street is causing vehicles to swerve and creating "
                       "traffic congestion during rush hours.",
        "category": "traffic",
        "priority": "medium",
        "status": "resolved",
        "reported_by": citizen,
        "assigned_to": worker,
        "department": "Transportation",
        "address": "321 Elm Street, Midtown",
        "latitude": 40.7505,
        "longitude": -73.9934,
        "actual_resolution_time": now,
        "feedback_rating": 5,
        "feedback_comment": "Quick response and excellent work quality!",
        "feedback_provided_at": now,
        "ward": DEMO_WARD,
    }, [
        ("pending", citizen, now - timedelta(days=5), "Issue reported by citizen"),
        ("assigned", dept_admin, now - timedelta(days=4), "Assigned to transportation department"),
        ("in_progress", worker, now - timedelta(days=2), "Work started on pothole repair"),
        ("resolved", worker, now, "Pothole repaired and road surface restored"),
    ])
    if issue_id:
        created += 1
        record_event(cur, "issue_resolved", issue_id, "Issue", {
            "category": "traffic", "department": "Transportation", "ward": DEMO_WARD,
            "priority": "medium", "resolutionTime": 120, "rating": 5,
        })
    return created


def main():
    print("=" * 60)
    print("CivicFlow - Seed demo data")
    print("=" * 60)

    models.ensure_schema_updates()
    conn = psycopg2.connect(**config.get_psycopg2_kwargs())
    try:
        cur = conn.cursor()
        users = {}

        print("\nUser accounts:")
        for name, email, role, phone, department, ward, address in USER_DEFS:
            user_id, result = upsert_user(cur, name, email, role, phone, department, ward, address)
            users[role] = user_id
            print(f"  - {name} <{email}> [{role}] -> {result}")

        print("\nDepartments:")
        for name, description, categories, contact_email, contact_phone in DEPARTMENT_DEFS:
            workers = [users["field_worker"]] if name == "Sanitation" else []
            result = upsert_department(
                cur, name, description, categories, contact_email, contact_phone,
                users["department_admin"], workers,
            )
            print(f"  - {name} -> {result}")

        created = seed_issues(cur, users)
        print(f"\nSample issues created: {created}")

        conn.commit()

        print("\nDone.")
        print(f"Password for seeded accounts: {DEFAULT_PASSWORD}")
        print("Reset these passwords after first login.")
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


if __name__ == "__main__":
    main()
