from flask import Flask, request, jsonify, send_from_directory
from config import Config
import models
import workflow
from auth import login_required, role_required, current_user, current_user_id, create_token
from errors import ApiError, ValidationError, PermissionDenied, NotFound
from datetime import datetime, date
import os
import io
import csv
import json
import re
import logging
from uuid import uuid4
from werkzeug.exceptions import HTTPException
from werkzeug.utils import secure_filename
from openpyxl import load_workbook

config = Config()

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)
logger = logging.getLogger(__name__)

MAX_IMAGES_PER_ISSUE = 5
MAX_UPLOAD_SIZE_BYTES = config.MAX_UPLOAD_SIZE_MB * 1024 * 1024

app = Flask(__name__)
app.config['SECRET_KEY'] = config.SECRET_KEY
app.config['MAX_CONTENT_LENGTH'] = MAX_UPLOAD_SIZE_BYTES * MAX_IMAGES_PER_ISSUE + 1024 * 1024
app.json.sort_keys = False

if os.getenv('SKIP_SCHEMA_UPDATES') != '1':
    models.ensure_schema_updates()

BASE_UPLOAD_DIR = config.UPLOAD_BASE_DIR
ISSUE_IMAGE_DIR = os.path.join(BASE_UPLOAD_DIR, 'issue_images')
ISSUE_IMAGE_URL_PREFIX = '/issue-images/'
IMAGE_EXTENSIONS = {'jpg', 'jpeg', 'png', 'gif', 'webp'}
IMAGE_SIGNATURES = (
    (b'\xff\xd8\xff', {'jpg', 'jpeg'}),
    (b'\x89PNG\r\n\x1a\n', {'png'}),
    (b'GIF87a', {'gif'}),
    (b'GIF89a', {'gif'}),
    (b'RIFF', {'webp'}),
)

PHONE_RE = re.compile(r'^[0-9+\-\s()]{7,20}$')
EMAIL_RE = re.compile(r'^\w+([.-]?\w+)*@\w+([.-]?\w+)*(\.\w{2,3})+$')
STRONG_PASSWORD_RE = re.compile(r'^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]{8,}$')

# super_admin accounts are only created through create_admin.py
CREATABLE_ROLES = tuple(r for r in workflow.ROLES if r != 'super_admin')
VALID_PUBLIC_SIGNUP_ROLES = {'citizen'}
IMPORT_REQUIRED_HEADERS = {'name', 'email', 'password', 'role'}


# ========================================
# PARSING & VALIDATION HELPERS
# ========================================

def parse_optional_int(raw_value):
    value = str(raw_value if raw_value is not None else '').strip()
    if not value:
        return None
    try:
        parsed = int(value)
        return parsed if parsed > 0 else None
    except (TypeError, ValueError):
        return None


def parse_page_args(args):
    page = parse_optional_int(args.get('page')) or 1
    limit = parse_optional_int(args.get('limit')) or config.DEFAULT_PAGE_LIMIT
    return page, min(limit, config.MAX_PAGE_LIMIT)


def parse_bool(raw_value):
    if isinstance(raw_value, bool):
        return raw_value
    return str(raw_value or '').strip().lower() in ('1', 'true', 'yes', 'on')


def parse_iso_datetime(value):
    text = (value or '').strip() if isinstance(value, str) else ''
    if not text:
        return None
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def parse_coordinate(value, low, high):
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    value = float(value)
    return value if low <= value <= high else None


def validate_contact(contact):
    if not contact:
        return True
    return bool(PHONE_RE.match(contact))


def validate_email(email):
    if not email:
        return True
    return bool(EMAIL_RE.match(email))


def clean_text(value):
    if value is None:
        return ''
    return str(value).strip()


def get_json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def require_capability(capability, message='Insufficient permissions'):
    if not workflow.has_capability(current_user().get('role'), capability):
        raise PermissionDenied(message)


def validate_issue_payload(data):
    """Validate an issue report (already flattened from JSON or form data)."""
    errors = {}
    clean = {}

    title = clean_text(data.get('title'))
    if not title:
        errors['title'] = 'Title is required'
    elif len(title) > 200:
        errors['title'] = 'Title must be less than 200 characters'
    clean['title'] = title

    description = clean_text(data.get('description'))
    if not description:
        errors['description'] = 'Description is required'
    elif len(description) > 2000:
        errors['description'] = 'Description must be less than 2000 characters'
    clean['description'] = description

    category = clean_text(data.get('category')).lower()
    if category not in workflow.VALID_ISSUE_CATEGORIES:
        errors['category'] = 'Please select a valid category'
    clean['category'] = category

    priority = clean_text(data.get('priority')).lower() or 'medium'
    if priority not in workflow.ISSUE_PRIORITIES:
        errors['priority'] = 'Please select a valid priority'
    clean['priority'] = priority

    location = data.get('location')
    if not isinstance(location, dict):
        errors['location'] = 'Location is required'
        location = {}
    address = clean_text(location.get('address'))
    if not address:
        errors['location.address'] = 'Address is required'
    coordinates = location.get('coordinates')
    if not isinstance(coordinates, dict):
        coordinates = location
    latitude = parse_coordinate(coordinates.get('latitude'), -90, 90)
    longitude = parse_coordinate(coordinates.get('longitude'), -180, 180)
    if latitude is None:
        errors['location.coordinates.latitude'] = 'Latitude must be between -90 and 90'
    if longitude is None:
        errors['location.coordinates.longitude'] = 'Longitude must be between -180 and 180'
    clean.update({'address': address, 'latitude': latitude, 'longitude': longitude})

    images = data.get('images') or []
    if not isinstance(images, list) or not all(isinstance(i, str) and i.strip() for i in images):
        errors['images'] = 'Images must be a list of URLs'
        images = []
    clean['images'] = [i.strip() for i in images]

    department = clean_text(data.get('department'))
    if len(department) > 100:
        errors['department'] = 'Department must be less than 100 characters'
    clean['department'] = department or None

    ward = clean_text(data.get('ward'))
    if len(ward) > 100:
        errors['ward'] = 'Ward must be less than 100 characters'
    clean['ward'] = ward or None

    is_anonymous = parse_bool(data.get('isAnonymous'))
    contact_info = data.get('contactInfo') if isinstance(data.get('contactInfo'), dict) else {}
    phone = clean_text(data.get('contactNumber') or contact_info.get('phone'))
    preferred = clean_text(data.get('preferredContact') or contact_info.get('preferredContact'))
    if not is_anonymous and not validate_contact(phone):
        errors['contactNumber'] = 'Please enter a valid contact number'
    clean['is_anonymous'] = is_anonymous
    clean['contact_phone'] = None if is_anonymous else (phone or None)
    clean['preferred_contact'] = None if is_anonymous else (preferred or None)

    if errors:
        raise ValidationError.from_fields(errors)
    return clean


def validate_issue_update(data):
    errors = {}
    clean = {}

    status = data.get('status')
    if status is not None:
        if status not in workflow.ISSUE_STATUSES:
            errors['status'] = 'Please select a valid status'
        clean['status'] = status

    assigned_to = data.get('assignedTo')
    if assigned_to is not None and assigned_to != '':
        parsed = parse_optional_int(assigned_to) if not isinstance(assigned_to, bool) else None
        if parsed is None:
            errors['assignedTo'] = 'assignedTo must be a user id'
        clean['assignedTo'] = parsed

    priority = data.get('priority')
    if priority is not None:
        if priority not in workflow.ISSUE_PRIORITIES:
            errors['priority'] = 'Please select a valid priority'
        clean['priority'] = priority

    eta = data.get('estimatedResolutionTime')
    if eta is not None:
        parsed_eta = parse_iso_datetime(eta)
        if parsed_eta is None:
            errors['estimatedResolutionTime'] = 'estimatedResolutionTime must be an ISO-8601 datetime'
        clean['estimatedResolutionTime'] = parsed_eta

    comment = data.get('comment')
    if comment is not None:
        if not isinstance(comment, str):
            errors['comment'] = 'Comment must be text'
        elif len(comment.strip()) > 500:
            errors['comment'] = 'Comment must be less than 500 characters'
        else:
            clean['comment'] = comment.strip() or None

    if errors:
        raise ValidationError.from_fields(errors)
    return clean


def validate_user_fields(data, strong_password=False, allowed_roles=CREATABLE_ROLES):
    errors = {}

    name = clean_text(data.get('name'))
    if not name:
        errors['name'] = 'Name is required'
    elif len(name) > 100:
        errors['name'] = 'Name must be less than 100 characters'

    email = clean_text(data.get('email')).lower()
    if not email or not validate_email(email):
        errors['email'] = 'Invalid email address'

    password = data.get('password') if isinstance(data.get('password'), str) else ''
    if strong_password:
        if len(password) < 8:
            errors['password'] = 'Password must be at least 8 characters'
        elif not STRONG_PASSWORD_RE.match(password):
            errors['password'] = (
                'Password must contain at least one uppercase letter, one lowercase letter, '
                'one number, and one special character'
            )
    elif len(password) < 6:
        errors['password'] = 'Password must be at least 6 characters'

    role = clean_text(data.get('role')).lower() or 'citizen'
    if role not in allowed_roles:
        errors['role'] = 'Please select a valid role'

    phone = clean_text(data.get('phone'))
    if not validate_contact(phone):
        errors['phone'] = 'Please provide a valid phone number'

    department = clean_text(data.get('department'))
    ward = clean_text(data.get('ward'))

    if errors:
        raise ValidationError.from_fields(errors)

    check_role_requirements(role, department, ward)
    return {
        'name': name,
        'email': email,
        'password': password,
        'role': role,
        'phone': phone or None,
        'address': clean_text(data.get('address')) or None,
        'department': department or None,
        'ward': ward or None,
    }


def check_role_requirements(role, department, ward):
    if role in workflow.ROLES_REQUIRING_DEPARTMENT and not department:
        raise ValidationError('Department is required for field workers and department admins')
    if role in workflow.ROLES_REQUIRING_WARD and not ward:
        raise ValidationError('Ward is required for regional admins')


def validate_image_upload(file_obj):
    if not file_obj or not file_obj.filename:
        return True, None, None

    safe_name = secure_filename(file_obj.filename)
    if not safe_name:
        return False, None, 'Image filename is invalid.'

    ext = safe_name.rsplit('.', 1)[-1].lower() if '.' in safe_name else ''
    if ext not in IMAGE_EXTENSIONS:
        return False, None, f'{safe_name}: image must be jpg, jpeg, png, gif, or webp.'

    file_obj.seek(0, os.SEEK_END)
    size = file_obj.tell()
    file_obj.seek(0)
    if size <= 0:
        return False, None, f'{safe_name}: image file is empty.'
    if size > MAX_UPLOAD_SIZE_BYTES:
        return False, None, f'{safe_name}: image must be below {config.MAX_UPLOAD_SIZE_MB} MB.'

    header = file_obj.read(12)
    file_obj.seek(0)
    if not any(header.startswith(sig) and ext in exts for sig, exts in IMAGE_SIGNATURES):
        return False, None, f'{safe_name}: file content does not match its image type.'
    if ext == 'webp' and header[8:12] != b'WEBP':
        return False, None, f'{safe_name}: file content does not match its image type.'

    return True, f"issue_{uuid4().hex}.{ext}", None


def save_issue_images(files):
    uploads = [f for f in files if f and f.filename]
    if len(uploads) > MAX_IMAGES_PER_ISSUE:
        raise ValidationError.from_fields({'images': f'At most {MAX_IMAGES_PER_ISSUE} images can be attached'})
    planned = []
    for upload in uploads:
        ok, stored_name, error = validate_image_upload(upload)
        if not ok:
            raise ValidationError.from_fields({'images': error})
        planned.append((upload, stored_name))

    os.makedirs(ISSUE_IMAGE_DIR, exist_ok=True)
    stored = []
    for upload, stored_name in planned:
        upload.save(os.path.join(ISSUE_IMAGE_DIR, stored_name))
        stored.append(stored_name)
    return stored


def delete_issue_images(stored_names):
    for name in stored_names:
        path = os.path.join(ISSUE_IMAGE_DIR, name)
        try:
            if os.path.isfile(path):
                os.remove(path)
        except OSError:
            logger.warning('Could not remove orphaned image %s', path)


def read_issue_form():
    """Flatten a multipart issue report into the JSON payload shape."""
    form = request.form
    data = {key: form.get(key) for key in (
        'title', 'description', 'category', 'priority', 'department', 'ward',
        'contactNumber', 'preferredContact', 'isAnonymous',
    )}
    raw_location = form.get('location')
    location = None
    if raw_location:
        try:
            location = json.loads(raw_location)
        except ValueError:
            raise ValidationError.from_fields({'location': 'Location must be valid JSON'})
    if not isinstance(location, dict):
        location = {
            'address': form.get('address'),
            'latitude': form.get('latitude'),
            'longitude': form.get('longitude'),
        }
    data['location'] = location
    data['images'] = [u for u in form.getlist('imageUrls') if u.strip()]
    return data


# ========================================
# SERIALIZERS
# ========================================

def _iso(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _person(user_id, name, email=None, phone=None):
    if user_id is None:
        return None
    person = {'id': user_id, 'name': name, 'email': email}
    if phone is not None:
        person['phone'] = phone
    return person


def serialize_user(user):
    return {
        'id': user.get('id'),
        'name': user.get('name'),
        'email': user.get('email'),
        'role': user.get('role'),
        'phone': user.get('phone'),
        'address': user.get('address'),
        'department': user.get('department'),
        'ward': user.get('ward'),
        'profileImage': user.get('profile_image') or '',
        'isActive': bool(user.get('is_active')),
        'createdAt': _iso(user.get('created_at')),
        'updatedAt': _iso(user.get('updated_at')),
    }


def reporter_hidden_from(issue, viewer):
    """Anonymous reports keep the reporter reference but only the reporter sees it."""
    if not issue.get('is_anonymous'):
        return False
    return str(issue.get('reported_by')) != str((viewer or {}).get('userId'))


def serialize_issue(issue, viewer, history=None):
    hide_reporter = reporter_hidden_from(issue, viewer)
    feedback = None
    if issue.get('feedback_rating') is not None:
        feedback = {
            'rating': issue.get('feedback_rating'),
            'comment': issue.get('feedback_comment'),
            'providedAt': _iso(issue.get('feedback_provided_at')),
        }
    contact_info = None
    if not hide_reporter and (issue.get('contact_phone') or issue.get('preferred_contact')):
        contact_info = {
            'phone': issue.get('contact_phone'),
            'preferredContact': issue.get('preferred_contact'),
        }
    data = {
        'id': issue.get('id'),
        'title': issue.get('title'),
        'description': issue.get('description'),
        'category': issue.get('category'),
        'priority': issue.get('priority'),
        'status': issue.get('status'),
        'reportedBy': None if hide_reporter else _person(
            issue.get('reported_by'), issue.get('reporter_name'),
            issue.get('reporter_email'), issue.get('reporter_phone'),
        ),
        'assignedTo': _person(
            issue.get('assigned_to'), issue.get('assignee_name'),
            issue.get('assignee_email'), issue.get('assignee_phone'),
        ),
        'department': issue.get('department'),
        'location': {
            'address': issue.get('address'),
            'coordinates': {
                'latitude': issue.get('latitude'),
                'longitude': issue.get('longitude'),
            },
        },
        'images': list(issue.get('images') or []),
        'estimatedResolutionTime': _iso(issue.get('estimated_resolution_time')),
        'actualResolutionTime': _iso(issue.get('actual_resolution_time')),
        'feedback': feedback,
        'upvotes': issue.get('upvotes') or 0,
        'ward': issue.get('ward'),
        'contactInfo': contact_info,
        'isAnonymous': bool(issue.get('is_anonymous')),
        'createdAt': _iso(issue.get('created_at')),
        'updatedAt': _iso(issue.get('updated_at')),
    }
    if history is not None:
        entries = []
        for entry in history:
            changed_by = _person(entry.get('changed_by'), entry.get('changed_by_name'), entry.get('changed_by_email'))
            if hide_reporter and str(entry.get('changed_by')) == str(issue.get('reported_by')):
                changed_by = None
            entries.append({
                'status': entry.get('status'),
                'changedBy': changed_by,
                'changedAt': _iso(entry.get('changed_at')),
                'comment': entry.get('comment'),
            })
        data['history'] = entries
    return data


def serialize_department(department):
    return {
        'id': department.get('id'),
        'name': department.get('name'),
        'description': department.get('description'),
        'categories': list(department.get('categories') or []),
        'head': _person(department.get('head_id'), department.get('head_name'), department.get('head_email')),
        'workers': department.get('workers', []),
        'contactEmail': department.get('contact_email'),
        'contactPhone': department.get('contact_phone'),
        'isActive': bool(department.get('is_active')),
        'createdAt': _iso(department.get('created_at')),
        'updatedAt': _iso(department.get('updated_at')),
    }


# ========================================
# AUTH
# ========================================

@app.route('/api/auth/register', methods=['POST'])
def register():
    data = get_json_body()
    role = clean_text(data.get('role')).lower() or 'citizen'
    if role in workflow.ROLES and role not in VALID_PUBLIC_SIGNUP_ROLES:
        raise PermissionDenied('Only citizen accounts can be self-registered. Contact a city administrator.')
    fields = validate_user_fields(data, allowed_roles=VALID_PUBLIC_SIGNUP_ROLES)
    user = models.create_user(**fields)
    logger.info('Registered user %s (%s)', user['id'], user['role'])
    return jsonify({
        'message': 'User registered successfully',
        'user': serialize_user(user),
        'token': create_token(user),
    }), 201


@app.route('/api/auth/login', methods=['POST'])
def login():
    data = get_json_body()
    email = data.get('email')
    password = data.get('password')
    if not isinstance(email, str) or not isinstance(password, str) or not email.strip() or not password:
        raise ValidationError('Email and password are required')
    email = email.strip().lower()

    user = models.authenticate_user(email, password)
    logger.info('User %s logged in', user['id'])
    return jsonify({
        'success': True,
        'user': serialize_user(user),
        'token': create_token(user),
    })


@app.route('/api/auth/me')
@login_required
def auth_me():
    user = models.get_user_by_id(current_user_id())
    if not user:
        raise NotFound('User not found')
    return jsonify({'user': serialize_user(user)})


@app.route('/api/auth/validate')
@login_required
def auth_validate():
    return jsonify({'valid': True, 'user': current_user()})


# ========================================
# ISSUES
# ========================================

@app.route('/api/issues', methods=['GET'])
@login_required
def issues_list():
    user = current_user()
    role = user.get('role')
    args = request.args
    page, limit = parse_page_args(args)

    filters = {}
    for key, allowed in (
        ('status', workflow.ISSUE_STATUSES),
        ('category', workflow.VALID_ISSUE_CATEGORIES),
        ('priority', workflow.ISSUE_PRIORITIES),
    ):
        value = clean_text(args.get(key))
        if value:
            if value not in allowed:
                raise ValidationError.from_fields({key: f'Unknown {key} "{value}"'})
            filters[key] = value

    department = clean_text(args.get('department'))
    if department and role in workflow.LIST_FILTER_ROLES['department']:
        filters['department'] = department
    ward = clean_text(args.get('ward'))
    if ward and role in workflow.LIST_FILTER_ROLES['ward']:
        filters['ward'] = ward
    assigned_to = parse_optional_int(args.get('assignedTo'))
    if assigned_to and role in workflow.LIST_FILTER_ROLES['assignedTo']:
        filters['assigned_to'] = assigned_to

    rows, total = models.list_issues(user, filters, page, limit)
    return jsonify({
        'issues': [serialize_issue(row, user) for row in rows],
        'pagination': {
            'page': page,
            'limit': limit,
            'total': total,
            'pages': (total + limit - 1) // limit,
        },
    })


@app.route('/api/issues', methods=['POST'])
@login_required
def issue_create():
    user = current_user()
    require_capability('create_issue', 'Only citizens can create issues')

    is_multipart = (request.mimetype or '').startswith('multipart/form-data')
    data = read_issue_form() if is_multipart else get_json_body()
    clean = validate_issue_payload(data)

    if not clean['department']:
        clean['department'] = models.find_department_for_category(clean['category'])
    if not clean['ward']:
        reporter = models.get_user_by_id(current_user_id()) or {}
        clean['ward'] = user.get('ward') or reporter.get('ward')
    missing = {}
    if not clean['department']:
        missing['department'] = 'No department handles this category; please choose one'
    if not clean['ward']:
        missing['ward'] = 'Ward is required'
    if missing:
        raise ValidationError.from_fields(missing)

    stored_images = save_issue_images(request.files.getlist('images')) if is_multipart else []
    clean['images'] = clean['images'] + [ISSUE_IMAGE_URL_PREFIX + name for name in stored_images]
    try:
        issue_id = models.create_issue(clean, current_user_id())
    except Exception:
        delete_issue_images(stored_images)
        raise

    logger.info('Issue %s created by user %s in %s', issue_id, user['userId'], clean['department'])
    issue = models.get_issue_by_id(issue_id)
    return jsonify({
        'message': 'Issue created successfully',
        'issue': serialize_issue(issue, user),
    }), 201


@app.route('/api/issues/<int:issue_id>', methods=['GET'])
@login_required
def issue_view(issue_id):
    user = current_user()
    issue = models.get_issue_by_id(issue_id)
    if not issue:
        raise NotFound('Issue not found')
    if not workflow.can_view_issue(user, issue):
        raise PermissionDenied('Access denied')
    history = models.get_issue_history(issue_id)
    return jsonify({'issue': serialize_issue(issue, user, history)})


@app.route('/api/issues/<int:issue_id>', methods=['PATCH'])
@login_required
def issue_update(issue_id):
    user = current_user()
    if not models.get_issue_by_id(issue_id):
        raise NotFound('Issue not found')
    updates = validate_issue_update(get_json_body())
    changed = models.update_issue(issue_id, user, updates)
    issue = models.get_issue_by_id(issue_id)
    history = models.get_issue_history(issue_id)
    return jsonify({
        'message': 'Issue updated successfully' if changed else 'No changes applied',
        'changed': changed,
        'issue': serialize_issue(issue, user, history),
    })


@app.route('/api/issues/<int:issue_id>/feedback', methods=['POST'])
@login_required
def issue_feedback(issue_id):
    user = current_user()
    require_capability('give_feedback', 'Only citizens can give feedback')
    data = get_json_body()

    errors = {}
    rating = data.get('rating')
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        errors['rating'] = 'Rating must be a whole number between 1 and 5'
    comment = data.get('comment') if isinstance(data.get('comment'), str) else ''
    if len(comment.strip()) > 1000:
        errors['comment'] = 'Feedback comment must be less than 1000 characters'
    if errors:
        raise ValidationError.from_fields(errors)

    models.add_issue_feedback(issue_id, user, rating, comment.strip() or None)
    issue = models.get_issue_by_id(issue_id)
    return jsonify({'message': 'Feedback recorded', 'issue': serialize_issue(issue, user)})


@app.route('/issue-images/<path:filename>')
def issue_image_file(filename):
    return send_from_directory(ISSUE_IMAGE_DIR, filename)


# ========================================
# DEPARTMENTS
# ========================================

@app.route('/api/departments', methods=['GET'])
@login_required
@role_required(*workflow.roles_with('list_departments'))
def departments_list():
    departments = models.get_active_departments()
    return jsonify({'departments': [serialize_department(d) for d in departments]})


@app.route('/api/departments/<int:department_id>', methods=['GET'])
@login_required
@role_required(*workflow.roles_with('list_departments'))
def department_view(department_id):
    department = models.get_department_by_id(department_id)
    if not department:
        raise NotFound('Department not found')
    return jsonify({'department': serialize_department(department)})


@app.route('/api/departments', methods=['POST'])
@login_required
@role_required(*workflow.roles_with('manage_departments'))
def department_create():
    data = get_json_body()
    errors = {}

    name = clean_text(data.get('name'))
    if not name:
        errors['name'] = 'Department name is required'
    elif len(name) > 100:
        errors['name'] = 'Department name cannot be more than 100 characters'

    description = clean_text(data.get('description'))
    if not description:
        errors['description'] = 'Department description is required'
    elif len(description) > 500:
        errors['description'] = 'Description cannot be more than 500 characters'

    categories = data.get('categories') or []
    if not isinstance(categories, list) or any(c not in workflow.DEPARTMENT_CATEGORIES for c in categories):
        errors['categories'] = 'Categories must be chosen from: ' + ', '.join(workflow.DEPARTMENT_CATEGORIES)
        categories = []

    head_id = parse_optional_int(data.get('headId'))
    if not head_id:
        errors['headId'] = 'Department head is required'

    raw_workers = data.get('workerIds') or []
    worker_ids = [parse_optional_int(w) for w in raw_workers] if isinstance(raw_workers, list) else [None]
    if any(w is None for w in worker_ids):
        errors['workerIds'] = 'workerIds must be a list of user ids'

    contact_email = clean_text(data.get('contactEmail')).lower()
    if not contact_email or not validate_email(contact_email):
        errors['contactEmail'] = 'Please enter a valid email address'
    contact_phone = clean_text(data.get('contactPhone'))
    if not validate_contact(contact_phone):
        errors['contactPhone'] = 'Please provide a valid phone number'

    if errors:
        raise ValidationError.from_fields(errors)

    department_id = models.create_department(
        name, description, list(dict.fromkeys(categories)), head_id, worker_ids,
        contact_email, contact_phone or None,
    )
    logger.info('Department %s (%s) created by user %s', department_id, name, current_user_id())
    department = models.get_department_by_id(department_id)
    return jsonify({
        'message': 'Department created successfully',
        'department': serialize_department(department),
    }), 201


# ========================================
# USERS
# ========================================

@app.route('/api/users', methods=['GET'])
@login_required
@role_required(*workflow.roles_with('list_users'))
def users_list():
    user = current_user()
    role_filter = clean_text(request.args.get('role')) or None
    if role_filter and role_filter not in workflow.ROLES:
        raise ValidationError.from_fields({'role': f'Unknown role "{role_filter}"'})

    if user['role'] == 'department_admin':
        department = user.get('department')
        if not department:
            raise PermissionDenied('Department admin account has no department')
    else:
        department = clean_text(request.args.get('department')) or None

    users = models.get_users(role=role_filter, department=department)
    return jsonify({'users': [serialize_user(u) for u in users], 'count': len(users)})


@app.route('/api/users', methods=['POST'])
@app.route('/api/admin/create-user', methods=['POST'])
@login_required
@role_required(*workflow.roles_with('manage_users'))
def admin_create_user():
    fields = validate_user_fields(get_json_body(), strong_password=True)
    user = models.create_user(**fields)
    logger.info('User %s (%s) created by admin %s', user['id'], user['role'], current_user_id())
    return jsonify({'message': 'User created successfully', 'user': serialize_user(user)}), 201


def read_import_rows(upload):
    filename = secure_filename(upload.filename or '')
    ext = filename.rsplit('.', 1)[-1].lower() if '.' in filename else ''
    if ext not in ('xlsx', 'csv'):
        raise ValidationError('Only .xlsx or .csv files are allowed for bulk user creation.')

    rows = []
    if ext == 'csv':
        content = upload.stream.read().decode('utf-8-sig')
        reader = csv.DictReader(io.StringIO(content))
        headers = {(h or '').strip().lower() for h in (reader.fieldnames or [])}
        if not IMPORT_REQUIRED_HEADERS.issubset(headers):
            raise ValidationError('Missing required columns. Required: name,email,password,role')
        for row in reader:
            rows.append({(k or '').strip().lower(): (v or '').strip() for k, v in row.items() if k})
        return rows

    wb = load_workbook(upload, read_only=True, data_only=True)
    ws = wb.active
    all_rows = list(ws.iter_rows(values_only=True))
    if not all_rows:
        raise ValidationError('Uploaded file is empty.')
    headers = [str(h).strip().lower() if h is not None else '' for h in all_rows[0]]
    if not IMPORT_REQUIRED_HEADERS.issubset(set(headers)):
        raise ValidationError('Missing required columns. Required: name,email,password,role')
    for r in all_rows[1:]:
        data = {}
        for idx, col in enumerate(headers):
            if not col:
                continue
            value = r[idx] if idx < len(r) else ''
            data[col] = str(value).strip() if value is not None else ''
        if any(v for v in data.values()):
            rows.append(data)
    return rows


@app.route('/api/admin/import-users', methods=['POST'])
@login_required
@role_required(*workflow.roles_with('manage_users'))
def admin_import_users():
    upload = request.files.get('users_file') or request.files.get('file')
    if not upload or not upload.filename:
        raise ValidationError('Please choose an Excel/CSV file to upload.')

    try:
        rows = read_import_rows(upload)
    except ApiError:
        raise
    except Exception as e:
        raise ValidationError(f'Unable to parse upload file: {e}')

    created = 0
    errors = []
    for i, row in enumerate(rows, start=2):
        try:
            fields = validate_user_fields(row, strong_password=True)
            models.create_user(**fields)
            created += 1
        except ValidationError as e:
            reasons = '; '.join(d['message'] for d in e.details) if e.details else e.message
            logger.warning('Import row %s rejected: %s', i, reasons)
            errors.append(f'Row {i}: {reasons}')
        except Exception as e:
            logger.warning('Import row %s failed: %s', i, e)
            errors.append(f'Row {i}: {e}')

    logger.info('Bulk import by admin %s: created %s, failed %s', current_user_id(), created, len(errors))
    return jsonify({'created': created, 'failed': len(errors), 'errors': errors})


def _user_in_admin_scope(actor, target):
    if actor.get('role') == 'department_admin':
        return bool(actor.get('department')) and target.get('department') == actor.get('department')
    return workflow.has_capability(actor.get('role'), 'list_users')


@app.route('/api/users/<int:user_id>', methods=['GET'])
@login_required
def user_view(user_id):
    actor = current_user()
    is_self = user_id == current_user_id()
    if not is_self and not workflow.has_capability(actor.get('role'), 'list_users'):
        raise PermissionDenied('Access denied')
    target = models.get_user_by_id(user_id)
    if not target:
        raise NotFound('User not found')
    if not is_self and not _user_in_admin_scope(actor, target):
        raise PermissionDenied('Access denied')
    return jsonify({'user': serialize_user(target)})


SELF_EDITABLE_FIELDS = {'name': 'name', 'phone': 'phone', 'address': 'address', 'profileImage': 'profile_image'}
ADMIN_EDITABLE_FIELDS = {'role': 'role', 'department': 'department', 'ward': 'ward', 'isActive': 'is_active'}


@app.route('/api/users/<int:user_id>', methods=['PATCH'])
@login_required
def user_update(user_id):
    actor = current_user()
    is_self = user_id == current_user_id()
    is_manager = workflow.has_capability(actor.get('role'), 'manage_users')
    if not is_self and not is_manager:
        raise PermissionDenied('Access denied')

    data = get_json_body()
    admin_keys = [k for k in ADMIN_EDITABLE_FIELDS if k in data]
    if admin_keys and not is_manager:
        raise PermissionDenied('Only city administrators can change ' + ', '.join(admin_keys))
    if is_self and any(k in data for k in ('role', 'isActive')):
        raise ValidationError('You cannot change your own role or active status')

    target = models.get_user_by_id(user_id)
    if not target:
        raise NotFound('User not found')
    if target.get('role') == 'super_admin' and actor.get('role') != 'super_admin' and not is_self:
        raise PermissionDenied('Only super admins can edit super admin accounts')

    errors = {}
    fields = {}
    for key, column in SELF_EDITABLE_FIELDS.items():
        if key in data:
            fields[column] = clean_text(data.get(key)) or None
    if 'name' in fields and (not fields['name'] or len(fields['name']) > 100):
        errors['name'] = 'Name must be between 1 and 100 characters'
    if 'profile_image' in fields:
        fields['profile_image'] = fields['profile_image'] or ''
    if fields.get('phone') and not validate_contact(fields['phone']):
        errors['phone'] = 'Please provide a valid phone number'

    if 'password' in data:
        password = data.get('password') if isinstance(data.get('password'), str) else ''
        if len(password) < 6:
            errors['password'] = 'Password must be at least 6 characters'
        elif is_self and not models.check_user_password(user_id, data.get('currentPassword') or ''):
            errors['currentPassword'] = 'Current password is incorrect'
        else:
            fields['password'] = password

    if 'role' in data:
        role = clean_text(data.get('role')).lower()
        if role not in CREATABLE_ROLES:
            errors['role'] = 'Please select a valid role'
        fields['role'] = role
    for key in ('department', 'ward'):
        if key in data:
            fields[key] = clean_text(data.get(key)) or None
    if 'isActive' in data:
        if not isinstance(data.get('isActive'), bool):
            errors['isActive'] = 'isActive must be true or false'
        fields['is_active'] = data.get('isActive')

    if errors:
        raise ValidationError.from_fields(errors)

    check_role_requirements(
        fields.get('role', target.get('role')),
        fields.get('department', target.get('department')),
        fields.get('ward', target.get('ward')),
    )
    user = models.update_user(user_id, fields)
    logger.info('User %s updated by %s: %s', user_id, current_user_id(), ', '.join(sorted(fields)) or 'no fields')
    return jsonify({'message': 'User updated successfully', 'user': serialize_user(user)})


# ========================================
# API ENDPOINTS
# ========================================

@app.route('/api/stats')
@login_required
def api_stats():
    return jsonify(models.get_dashboard_stats(current_user()))


@app.route('/healthz')
def healthz():
    return jsonify({'status': 'ok'}), 200


# ========================================
# ERROR HANDLERS
# ========================================

@app.errorhandler(ApiError)
def handle_api_error(error):
    return jsonify(error.to_dict()), error.status_code


@app.errorhandler(HTTPException)
def handle_http_error(error):
    return jsonify({'error': error.description or error.name}), error.code


@app.errorhandler(Exception)
def handle_unexpected_error(error):
    logger.exception('Unhandled error on %s %s', request.method, request.path)
    return jsonify({'error': 'Internal server error'}), 500


# ========================================
# RUN
# ========================================

if __name__ == '__main__':
    app.run(debug=config.DEBUG, host=config.HOST, port=config.PORT)
