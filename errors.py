"""Error taxonomy shared by the data layer, the workflow rules and the routes.

Each error carries the HTTP status it maps to; ``app.py`` renders them as
``{"error": ..., "details": ...}`` JSON bodies.
"""


class ApiError(Exception):
    status_code = 500
    default_message = 'Internal server error'

    def __init__(self, message=None, details=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details

    def to_dict(self):
        body = {'error': self.message}
        if self.details:
            body['details'] = self.details
        return body


class ValidationError(ApiError):
    status_code = 400
    default_message = 'Validation error'

    @classmethod
    def from_fields(cls, field_errors):
        """Build from a ``{field: message}`` mapping."""
        details = [{'field': field, 'message': msg} for field, msg in field_errors.items()]
        return cls('Validation error', details=details)


class AuthError(ApiError):
    status_code = 401
    default_message = 'Authentication required'


class PermissionDenied(ApiError):
    status_code = 403
    default_message = 'Access denied'


class NotFound(ApiError):
    status_code = 404
    default_message = 'Not found'
