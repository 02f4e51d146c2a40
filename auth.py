import logging
from datetime import datetime, timedelta, timezone
from functools import wraps

import jwt
from flask import g, request

from config import Config
from errors import AuthError, PermissionDenied

config = Config()
logger = logging.getLogger(__name__)

TOKEN_CLAIMS = ('userId', 'email', 'role', 'department', 'ward')


# ========================================
# TOKENS
# ========================================

def create_token(user, now=None):
    """Sign a bearer token for a user row from the store."""
    issued_at = now or datetime.now(timezone.utc)
    payload = {
        'userId': str(user['id']),
        'email': user['email'],
        'role': user['role'],
        'iat': issued_at,
        'exp': issued_at + timedelta(days=config.JWT_EXPIRY_DAYS),
    }
    if user.get('department'):
        payload['department'] = user['department']
    if user.get('ward'):
        payload['ward'] = user['ward']
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def decode_token(token):
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthError('Invalid or expired token')
    except jwt.InvalidTokenError:
        raise AuthError('Invalid or expired token')
    if not payload.get('userId') or not payload.get('role'):
        raise AuthError('Invalid or expired token')
    return {key: payload.get(key) for key in TOKEN_CLAIMS}


def get_bearer_token(header_value):
    if not header_value or not header_value.startswith('Bearer '):
        return None
    token = header_value[len('Bearer '):].strip()
    return token or None


def current_user():
    return getattr(g, 'current_user', None)


def current_user_id():
    user = current_user()
    return int(user['userId']) if user else None


# ========================================
# AUTH DECORATORS
# ========================================

def login_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        token = get_bearer_token(request.headers.get('Authorization'))
        if not token:
            raise AuthError('Missing or invalid authorization header')
        try:
            g.current_user = decode_token(token)
        except AuthError:
            logger.warning('Rejected bearer token on %s %s', request.method, request.path)
            raise
        return f(*args, **kwargs)
    return decorated


def role_required(*roles):
    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            user = current_user()
            if not user or user.get('role') not in roles:
                raise PermissionDenied('Insufficient permissions')
            return f(*args, **kwargs)
        return decorated
    return decorator
