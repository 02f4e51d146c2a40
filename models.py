import logging
from collections import Counter

import psycopg2
import psycopg2.extras
from psycopg2.extras import Json
from werkzeug.security import generate_password_hash, check_password_hash

import workflow
from config import Config
from errors import AuthError, NotFound, PermissionDenied, ValidationError

config = Config()
logger = logging.getLogger(__name__)


def ensure_schema_updates():
    """Create the tables and indexes the service needs if they are missing."""
    conn = psycopg2.connect(**config.get_psycopg2_kwargs())
    conn.autocommit = True
    try:
        cur = dict_cursor(conn)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id SERIAL PRIMARY KEY,
                name VARCHAR(100) NOT NULL,
                email VARCHAR(255) NOT NULL UNIQUE,
                password_hash VARCHAR(255) NOT NULL,
                role VARCHAR(30) NOT NULL DEFAULT 'citizen',
                phone VARCHAR(30),
                address TEXT,
                department VARCHAR(100),
                ward VARCHAR(100),
                profile_image VARCHAR(255) NOT NULL DEFAULT '',
                is_active BOOLEAN NOT NULL DEFAULT TRUE,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        cur.execute("CREATE INDEX IF NOT EXISTS idx_users_role ON users (role)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_users_department ON users (department)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_users_ward ON users (ward)")
        cur.execute("""
            CREATE TABLE IF NOT EXISTS departments (
                id SERIAL PRIMARY KEY,
                name VARCHAR(100) NOT NULL UNIQUE,
                description VARCHAR(500) NOT NULL,
                categories TEXT[] NOT NULL DEFAULT '{}',
                head_id INTEGER REFERENCES users(id),
                contact_email VARCHAR(255) NOT NULL,
                contact_phone VARCHAR(30),
                is_active BOOLEAN NOT NULL DEFAULT TRUE,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS department_workers (
                department_id INTEGER NOT NULL REFERENCES departments(id),
                user_id INTEGER NOT NULL REFERENCES users(id),
                PRIMARY KEY (department_id, user_id)
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS issues (
                id SERIAL PRIMARY KEY,
                title VARCHAR(200) NOT NULL,
                description VARCHAR(2000) NOT NULL,
                category VARCHAR(40) NOT NULL,
                priority VARCHAR(10) NOT NULL DEFAULT 'medium',
                status VARCHAR(20) NOT NULL DEFAULT 'pending',
                reported_by INTEGER NOT NULL REFERENCES users(id),
                assigned_to INTEGER REFERENCES users(id),
                department VARCHAR(100) NOT NULL,
                address TEXT NOT NULL,
                latitude DOUBLE PRECISION NOT NULL,
                longitude DOUBLE PRECISION NOT NULL,
                images TEXT[] NOT NULL DEFAULT '{}',
                estimated_resolution_time TIMESTAMPTZ,
                actual_resolution_time TIMESTAMP,
                feedback_rating SMALLINT CHECK (feedback_rating BETWEEN 1 AND 5),
                feedback_comment VARCHAR(1000),
                feedback_provided_at TIMESTAMP,
                upvotes INTEGER NOT NULL DEFAULT 0 CHECK (upvotes >= 0),
                ward VARCHAR(100) NOT NULL,
                contact_phone VARCHAR(30),
                preferred_contact VARCHAR(30),
                is_anonymous BOOLEAN NOT NULL DEFAULT FALSE,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        for column in ('status', 'category', 'priority', 'reported_by', 'assigned_to', 'department', 'ward'):
            cur.execute(f"CREATE INDEX IF NOT EXISTS idx_issues_{column} ON issues ({column})")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_issues_created_at ON issues (created_at DESC)")
        cur.execute("""
            CREATE TABLE IF NOT EXISTS issue_history (
                id SERIAL PRIMARY KEY,
                issue_id INTEGER NOT NULL REFERENCES issues(id),
                status VARCHAR(20) NOT NULL,
                changed_by INTEGER NOT NULL REFERENCES users(id),
                changed_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                comment VARCHAR(500)
            )
        """)
        cur.execute("""
            CREATE INDEX IF NOT EXISTS idx_issue_history_issue_changed
            ON issue_history (issue_id, changed_at DESC, id DESC)
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS analytics (
                id SERIAL PRIMARY KEY,
                type VARCHAR(40) NOT NULL,
                entity_id INTEGER NOT NULL,
                entity_type VARCHAR(20) NOT NULL,
                metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
                timestamp TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        cur.execute("CREATE INDEX IF NOT EXISTS idx_analytics_type ON analytics (type)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_analytics_timestamp ON analytics (timestamp DESC)")
    finally:
        conn.close()

def get_db():
    """Get database connection"""
    conn = psycopg2.connect(**config.get_psycopg2_kwargs())
    conn.autocommit = False
    return conn

def dict_cursor(conn):
    return conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)


# ========================================
# ANALYTICS (write-only)
# ========================================

def record_analytics(cur, event_type, entity_id, entity_type, metadata=None):
    """Insert one analytics event on the caller's cursor so it shares the caller's transaction."""
    if event_type not in workflow.ANALYTICS_EVENT_TYPES:
        raise ValueError(f'Unknown analytics event type: {event_type}')
    if entity_type not in workflow.ANALYTICS_ENTITY_TYPES:
        raise ValueError(f'Unknown analytics entity type: {entity_type}')
    payload = {k: v for k, v in (metadata or {}).items() if v is not None}
    cur.execute("""
        INSERT INTO analytics (type, entity_id, entity_type, metadata)
        VALUES (%s, %s, %s, %s)
    """, (event_type, entity_id, entity_type, Json(payload)))


# ========================================
# USER OPERATIONS
# ========================================

USER_COLUMNS = """
    id, name, email, role, phone, address, department, ward,
    profile_image, is_active, created_at, updated_at
"""
USER_UPDATABLE_COLUMNS = {
    'name', 'phone', 'address', 'profile_image', 'password',
    'role', 'department', 'ward', 'is_active',
}


def create_user(name, email, password, role='citizen', phone=None, address=None, department=None, ward=None):
    conn = get_db()
    try:
        cur = dict_cursor(conn)
        email = (email or '').strip().lower()
        cur.execute("SELECT id FROM users WHERE email = %s", (email,))
        if cur.fetchone():
            raise ValidationError('User with this email already exists')
        password_hash = generate_password_hash(password)
        cur.execute(f"""
            INSERT INTO users (name, email, password_hash, role, phone, address, department, ward)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {USER_COLUMNS}
        """, (name, email, password_hash, role, phone, address, department, ward))
        user = dict(cur.fetchone())
        record_analytics(cur, 'user_registered', user['id'], 'User', {
            'userRole': role,
            'department': department,
            'ward': ward,
        })
        conn.commit()
        return user
    except psycopg2.IntegrityError:
        conn.rollback()
        raise ValidationError('User with this email already exists')
    except Exception as e:
        conn.rollback()
        raise e
    finally:
        conn.close()

def get_user_by_id(user_id):
    conn = get_db()
    try:
        cur = dict_cursor(conn)
        cur.execute("SELECT * FROM users WHERE id = %s", (user_id,))
        user = cur.fetchone()
        return dict(user) if user else None
    finally:
        conn.close()

def get_user_by_email(email):
    conn = get_db()
    try:
        cur = dict_cursor(conn)
        cur.execute("SELECT * FROM users WHERE email = %s", ((email or '').strip().lower(),))
        user = cur.fetchone()
        return dict(user) if user else None
    finally:
        conn.close()

def authenticate_user(email, password):
    """Return the user row for valid credentials.

    Disabled accounts are refused before the password is looked at, so the
    caller always learns that the account is disabled.
    """
    user = get_user_by_email(email)
    if not user:
        raise AuthError('Invalid email or password')
    if not user.get('is_active'):
        raise PermissionDenied('Account is disabled. Please contact administrator.')
    if not password or not check_password_hash(user.get('password_hash') or '', password):
        raise AuthError('Invalid email or password')
    return user

def check_user_password(user_id, password):
    user = get_user_by_id(user_id)
    if not user or not password:
        return False
    return check_password_hash(user.get('password_hash') or '', password)

def get_users(role=None, department=None):
    conn = get_db()
    try:
        cur = dict_cursor(conn)
        conditions = []
        params = []
        if role:
            conditions.append("role = %s")
            params.append(role)
        if department:
            conditions.append("department = %s")
            params.append(department)
        query = f"SELECT {USER_COLUMNS} FROM users"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY role, name"
        cur.execute(query, params)
        return [dict(row) for row in cur.fetchall()]
    finally:
        conn.close()

def update_user(user_id, fields):
    unknown = set(fields) - USER_UPDATABLE_COLUMNS
    if unknown:
        raise ValueError(f"Cannot update user columns: {', '.join(sorted(unknown))}")
    fields = dict(fields)
    if 'password' in fields:
        fields['password_hash'] = generate_password_hash(fields.pop('password'))
    conn = get_db()
    try:
        cur = dict_cursor(conn)
        if fields:
            set_parts = [f"{column} = %s" for column in fields] + ["updated_at = CURRENT_TIMESTAMP"]
            cur.execute(
                f"UPDATE users SET {', '.join(set_parts)} WHERE id = %s RETURNING {USER_COLUMNS}",
                list(fields.values()) + [user_id]
            )
        else:
            cur.execute(f"SELECT {USER_COLUMNS} FROM users WHERE id = %s", (user_id,))
        user = cur.fetchone()
        if not user:
            raise NotFound('User not found')
        conn.commit()
        return dict(user)
    except Exception as e:
        conn.rollback()
        raise e
    finally:
        conn.close()


# ========================================
# DEPARTMENT OPERATIONS
# ========================================

DEPARTMENT_SELECT = """
    SELECT d.*, h.name AS head_name, h.email AS head_email
    FROM departments d
    LEFT JOIN users h ON d.head_id = h.id
"""


def _attach_department_workers(cur, departments):
    if not departments:
        return departments
    ids = [d['id'] for d in departments]
    cur.execute("""
        SELECT dw.department_id, u.id, u.name, u.email
        FROM department_workers dw
        JOIN users u ON u.id = dw.user_id
        WHERE dw.department_id = ANY(%s)
        ORDER BY u.name
    """, (ids,))
    workers = {}
    for row in cur.fetchall():
        workers.setdefault(row['department_id'], []).append(
            {'id': row['id'], 'name': row['name'], 'email': row['email']}
        )
    for department in departments:
        department['workers'] = workers.get(department['id'], [])
    return departments

def get_active_departments():
    conn = get_db()
    try:
        cur = dict_cursor(conn)
        cur.execute(DEPARTMENT_SELECT + " WHERE d.is_active = TRUE ORDER BY d.name")
        departments = [dict(row) for row in cur.fetchall()]
        return _attach_department_workers(cur, departments)
    finally:
        conn.close()

def get_department_by_id(department_id):
    conn = get_db()
    try:
        cur = dict_cursor(conn)
        cur.execute(DEPARTMENT_SELECT + " WHERE d.id = %s", (department_id,))
        row = cur.fetchone()
        if not row:
            return None
        return _attach_department_workers(cur, [dict(row)])[0]
    finally:
        conn.close()

def find_department_for_category(category):
    """Name of the active department handling an issue category, or None."""
    group = workflow.department_category_for(category)
    conn = get_db()
    try:
        cur = dict_cursor(conn)
        cur.execute("""
            SELECT name FROM departments
            WHERE is_active = TRUE AND %s = ANY(categories)
            ORDER BY id
            LIMIT 1
        """, (group,))
        row = cur.fetchone()
        return row['name'] if row else None
    finally:
        conn.close()

def create_department(name, description, categories, head_id, worker_ids, contact_email, contact_phone=None):
    conn = get_db()
    try:
        cur = dict_cursor(conn)
        cur.execute("SELECT id FROM departments WHERE LOWER(name) = LOWER(%s)", (name,))
        if cur.fetchone():
            raise ValidationError('Department with this name already exists')

        cur.execute("SELECT id FROM users WHERE id = %s", (head_id,))
        if not cur.fetchone():
            raise ValidationError('Department head not found')

        worker_ids = sorted(set(worker_ids or []))
        if worker_ids:
            cur.execute(
                "SELECT id FROM users WHERE id = ANY(%s) AND role = 'field_worker'",
                (worker_ids,)
            )
            found = {row['id'] for row in cur.fetchall()}
            missing = [wid for wid in worker_ids if wid not in found]
            if missing:
                raise ValidationError(
                    f"Workers must be existing field workers: {', '.join(str(m) for m in missing)}"
                )

        cur.execute("""
            INSERT INTO departments (name, description, categories, head_id, contact_email, contact_phone)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING id
        """, (name, description, list(categories), head_id, contact_email, contact_phone))
        department_id = cur.fetchone()['id']
        for worker_id in worker_ids:
            cur.execute(
                "INSERT INTO department_workers (department_id, user_id) VALUES (%s, %s)",
                (department_id, worker_id)
            )
        record_analytics(cur, 'department_activity', department_id, 'Department', {'department': name})
        conn.commit()
        return department_id
    except Exception as e:
        conn.rollback()
        raise e
    finally:
        conn.close()


# ========================================
# ISSUE OPERATIONS
# ========================================

ISSUE_SELECT = """
    SELECT i.*,
        r.name AS reporter_name, r.email AS reporter_email, r.phone AS reporter_phone,
        a.name AS assignee_name, a.email AS assignee_email, a.phone AS assignee_phone
    FROM issues i
    LEFT JOIN users r ON i.reported_by = r.id
    LEFT JOIN users a ON i.assigned_to = a.id
"""
ISSUE_UPDATABLE_COLUMNS = {
    'status', 'assigned_to', 'priority', 'estimated_resolution_time', 'actual_resolution_time',
}


def issue_scope_clause(user, action):
    """SQL predicate (alias ``i``) for the issues a user may see for ``action``.

    Returns ``(None, [])`` for unrestricted roles.
    """
    scopes = workflow.issue_scopes(user.get('role'), action)
    if 'all' in scopes:
        return None, []
    parts = []
    params = []
    for scope in scopes:
        if scope == 'reporter':
            parts.append("i.reported_by = %s")
            params.append(int(user['userId']))
        elif scope == 'assignee':
            parts.append("i.assigned_to = %s")
            params.append(int(user['userId']))
        elif scope == 'department' and user.get('department'):
            parts.append("i.department = %s")
            params.append(user['department'])
        elif scope == 'department_pending' and user.get('department'):
            parts.append("(i.department = %s AND i.status = 'pending')")
            params.append(user['department'])
        elif scope == 'ward' and user.get('ward'):
            parts.append("i.ward = %s")
            params.append(user['ward'])
    if not parts:
        return "FALSE", []
    return "(" + " OR ".join(parts) + ")", params

def _issue_where(user, action, filters=None):
    conditions = []
    params = []
    scope_sql, scope_params = issue_scope_clause(user, action)
    if scope_sql:
        conditions.append(scope_sql)
        params.extend(scope_params)
    column_map = {
        'status': 'i.status',
        'category': 'i.category',
        'priority': 'i.priority',
        'department': 'i.department',
        'ward': 'i.ward',
        'assigned_to': 'i.assigned_to',
    }
    for key, column in column_map.items():
        value = (filters or {}).get(key)
        if value is not None and value != '':
            conditions.append(f"{column} = %s")
            params.append(value)
    where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
    return where, params

def create_issue(data, reporter_id):
    conn = get_db()
    try:
        cur = dict_cursor(conn)
        cur.execute("""
            INSERT INTO issues (title, description, category, priority, status, reported_by,
                department, address, latitude, longitude, images, ward,
                contact_phone, preferred_contact, is_anonymous)
            VALUES (%s, %s, %s, %s, 'pending', %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id
        """, (
            data['title'],
            data['description'],
            data['category'],
            data.get('priority') or 'medium',
            reporter_id,
            data['department'],
            data['address'],
            data['latitude'],
            data['longitude'],
            list(data.get('images') or []),
            data['ward'],
            data.get('contact_phone'),
            data.get('preferred_contact'),
            bool(data.get('is_anonymous')),
        ))
        issue_id = cur.fetchone()['id']
        cur.execute("""
            INSERT INTO issue_history (issue_id, status, changed_by, comment)
            VALUES (%s, 'pending', %s, 'Issue created')
        """, (issue_id, reporter_id))
        record_analytics(cur, 'issue_created', issue_id, 'Issue', {
            'category': data['category'],
            'department': data['department'],
            'ward': data['ward'],
            'priority': data.get('priority') or 'medium',
        })
        conn.commit()
        return issue_id
    except Exception as e:
        conn.rollback()
        raise e
    finally:
        conn.close()

def get_issue_by_id(issue_id):
    conn = get_db()
    try:
        cur = dict_cursor(conn)
        cur.execute(ISSUE_SELECT + " WHERE i.id = %s", (issue_id,))
        result = cur.fetchone()
        return dict(result) if result else None
    finally:
        conn.close()

def get_issue_history(issue_id):
    conn = get_db()
    try:
        cur = dict_cursor(conn)
        cur.execute("""
            SELECT h.id, h.status, h.changed_by, h.changed_at, h.comment,
                u.name AS changed_by_name, u.email AS changed_by_email
            FROM issue_history h
            LEFT JOIN users u ON h.changed_by = u.id
            WHERE h.issue_id = %s
            ORDER BY h.changed_at ASC, h.id ASC
        """, (issue_id,))
        return [dict(row) for row in cur.fetchall()]
    finally:
        conn.close()

def list_issues(user, filters=None, page=1, limit=10):
    """Role-scoped page of issues, newest first. Returns ``(rows, total)``."""
    conn = get_db()
    try:
        cur = dict_cursor(conn)
        where, params = _issue_where(user, 'list', filters)
        cur.execute("SELECT COUNT(*) AS total FROM issues i" + where, params)
        total = cur.fetchone()['total']
        offset = (page - 1) * limit
        cur.execute(
            ISSUE_SELECT + where + " ORDER BY i.created_at DESC, i.id DESC LIMIT %s OFFSET %s",
            params + [limit, offset]
        )
        return [dict(row) for row in cur.fetchall()], total
    finally:
        conn.close()

def update_issue(issue_id, user, updates, now=None):
    """Apply a validated PATCH to an issue.

    The issue row is locked for the whole transaction, so the history append,
    the resolution stamp and the analytics event commit together. Returns
    False when the request changed nothing.
    """
    conn = get_db()
    try:
        cur = dict_cursor(conn)
        cur.execute("SELECT * FROM issues WHERE id = %s FOR UPDATE", (issue_id,))
        issue = cur.fetchone()
        if not issue:
            raise NotFound('Issue not found')
        issue = dict(issue)
        if not workflow.can_update_issue(user, issue):
            raise PermissionDenied('Access denied')

        assignee = None
        if updates.get('assignedTo') is not None:
            cur.execute(
                "SELECT id, role, department, is_active FROM users WHERE id = %s",
                (updates['assignedTo'],)
            )
            row = cur.fetchone()
            assignee = dict(row) if row else None

        cur.execute("""
            SELECT status, changed_by, comment FROM issue_history
            WHERE issue_id = %s
            ORDER BY id DESC
            LIMIT 1
        """, (issue_id,))
        last_entry = cur.fetchone()

        if now is None:
            # same clock as the column defaults that stamped created_at and the first history row
            cur.execute("SELECT LOCALTIMESTAMP AS now")
            now = cur.fetchone()['now']

        plan = workflow.plan_issue_update(
            issue, updates, user,
            assignee=assignee,
            last_entry=dict(last_entry) if last_entry else None,
            now=now,
        )
        if plan is None:
            conn.rollback()
            return False

        fields = plan['fields']
        unknown = set(fields) - ISSUE_UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update issue columns: {', '.join(sorted(unknown))}")
        set_parts = [f"{column} = %s" for column in fields] + ["updated_at = CURRENT_TIMESTAMP"]
        cur.execute(
            f"UPDATE issues SET {', '.join(set_parts)} WHERE id = %s",
            list(fields.values()) + [issue_id]
        )

        entry = plan['history']
        cur.execute("""
            INSERT INTO issue_history (issue_id, status, changed_by, changed_at, comment)
            VALUES (%s, %s, %s, %s, %s)
        """, (issue_id, entry['status'], int(entry['changed_by']), entry['changed_at'], entry['comment']))

        if plan['resolved']:
            record_analytics(cur, 'issue_resolved', issue_id, 'Issue', {
                'category': issue['category'],
                'department': issue['department'],
                'ward': issue['ward'],
                'priority': fields.get('priority', issue['priority']),
                'resolutionTime': plan['resolution_hours'],
            })

        conn.commit()
        logger.info(
            "Issue %s updated by user %s: %s",
            issue_id, user.get('userId'), ', '.join(sorted(fields)) or 'comment'
        )
        return True
    except Exception as e:
        conn.rollback()
        raise e
    finally:
        conn.close()

def add_issue_feedback(issue_id, user, rating, comment):
    conn = get_db()
    try:
        cur = dict_cursor(conn)
        cur.execute("SELECT * FROM issues WHERE id = %s FOR UPDATE", (issue_id,))
        issue = cur.fetchone()
        if not issue:
            raise NotFound('Issue not found')
        if str(issue['reported_by']) != str(user.get('userId')):
            raise PermissionDenied('Only the reporter can give feedback on this issue')
        if issue['status'] not in workflow.FEEDBACK_STATUSES:
            raise ValidationError('Feedback can only be given once the issue is resolved or closed')
        if issue.get('feedback_rating') is not None:
            raise ValidationError('Feedback has already been provided for this issue')

        cur.execute("""
            UPDATE issues SET feedback_rating = %s, feedback_comment = %s,
                feedback_provided_at = CURRENT_TIMESTAMP, updated_at = CURRENT_TIMESTAMP
            WHERE id = %s
        """, (rating, comment, issue_id))
        record_analytics(cur, 'department_activity', issue_id, 'Issue', {
            'category': issue['category'],
            'department': issue['department'],
            'ward': issue['ward'],
            'rating': rating,
        })
        conn.commit()
    except Exception as e:
        conn.rollback()
        raise e
    finally:
        conn.close()


# ========================================
# DASHBOARD
# ========================================

def get_dashboard_stats(user):
    conn = get_db()
    try:
        cur = dict_cursor(conn)
        where, params = _issue_where(user, 'list')
        cur.execute(
            "SELECT i.status, i.priority, i.category, COUNT(*) AS total FROM issues i"
            + where + " GROUP BY i.status, i.priority, i.category",
            params
        )
        rows = [dict(row) for row in cur.fetchall()]
    finally:
        conn.close()
    return _summarize_issue_counts(rows)

def _summarize_issue_counts(rows):
    by_status = Counter({status: 0 for status in workflow.ISSUE_STATUSES})
    by_priority = Counter({priority: 0 for priority in workflow.ISSUE_PRIORITIES})
    by_category = Counter()
    for row in rows:
        count = int(row.get('total') or 0)
        by_status[row.get('status')] += count
        by_priority[row.get('priority')] += count
        by_category[row.get('category')] += count
    return {
        'total': sum(by_status.values()),
        'byStatus': dict(by_status),
        'byPriority': dict(by_priority),
        'byCategory': dict(by_category),
        'open': sum(by_status[s] for s in ('pending', 'assigned', 'in_progress')),
    }
