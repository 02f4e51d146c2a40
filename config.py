import os
import re
from pathlib import Path

from dotenv import load_dotenv

_ENV_PATH = Path(__file__).resolve().parent / '.env'
load_dotenv(dotenv_path=_ENV_PATH)

DEV_SECRET_KEY = 'dev-only-change-me-before-production'


class Config:
    def __init__(self):
        self.APP_ENV = os.environ.get('APP_ENV', 'development').strip().lower()
        self.IS_PRODUCTION = self.APP_ENV == 'production'

        self.SECRET_KEY = os.environ.get('SECRET_KEY', DEV_SECRET_KEY)

        # Bearer tokens are signed with JWT_SECRET; falls back to SECRET_KEY outside production.
        self.JWT_SECRET = os.environ.get('JWT_SECRET') or self.SECRET_KEY
        self.JWT_ALGORITHM = 'HS256'
        self.JWT_EXPIRY_DAYS = int(os.environ.get('JWT_EXPIRY_DAYS', '7'))

        # PostgreSQL configuration: supports either DATABASE_URL or host/user/password fields.
        self.DB_HOST = os.environ.get('DB_HOST', 'localhost')
        self.DB_PORT = os.environ.get('DB_PORT', '5432')
        self.DB_NAME = os.environ.get('DB_NAME', 'civicflow')
        self.DB_USER = os.environ.get('DB_USER', 'postgres')
        self.DB_PASSWORD = os.environ.get('DB_PASSWORD')
        self.DB_SSLMODE = os.environ.get('DB_SSLMODE', 'prefer')
        self.DB_CONNECT_TIMEOUT = int(os.environ.get('DB_CONNECT_TIMEOUT', '10'))
        self.DB_SCHEMA = os.environ.get('DB_SCHEMA', 'public').strip() or 'public'
        if not re.fullmatch(r'[A-Za-z_][A-Za-z0-9_]*', self.DB_SCHEMA):
            raise RuntimeError(
                "Invalid DB_SCHEMA value. Use a valid PostgreSQL identifier (e.g., public or civicflow)."
            )

        # App runtime configuration
        self.HOST = os.environ.get('HOST', '0.0.0.0')
        self.PORT = int(os.environ.get('PORT', '5000'))
        self.DEBUG = os.environ.get('FLASK_DEBUG', '0') == '1' and not self.IS_PRODUCTION
        self.LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').strip().upper() or 'INFO'

        # Storage controls
        self.UPLOAD_BASE_DIR = os.environ.get(
            'UPLOAD_BASE_DIR',
            os.path.join(os.path.dirname(__file__), 'uploads')
        )
        self.MAX_UPLOAD_SIZE_MB = int(os.environ.get('MAX_UPLOAD_SIZE_MB', '10'))

        # Listing
        self.DEFAULT_PAGE_LIMIT = int(os.environ.get('DEFAULT_PAGE_LIMIT', '10'))
        self.MAX_PAGE_LIMIT = int(os.environ.get('MAX_PAGE_LIMIT', '100'))

        if self.IS_PRODUCTION:
            self._validate_production_settings()

    def _validate_production_settings(self):
        missing = []
        database_url = os.environ.get('DATABASE_URL')

        if not self.SECRET_KEY or self.SECRET_KEY == DEV_SECRET_KEY:
            missing.append('SECRET_KEY')

        if not os.environ.get('JWT_SECRET'):
            missing.append('JWT_SECRET')

        if not database_url:
            required_db = {
                'DB_HOST': self.DB_HOST,
                'DB_PORT': self.DB_PORT,
                'DB_NAME': self.DB_NAME,
                'DB_USER': self.DB_USER,
                'DB_PASSWORD': self.DB_PASSWORD,
            }
            for key, value in required_db.items():
                if not value:
                    missing.append(key)

        if missing:
            raise RuntimeError(
                "Missing required production environment variables: "
                + ", ".join(missing)
            )

    def get_psycopg2_kwargs(self):
        database_url = os.environ.get('DATABASE_URL')
        search_path_option = f"-c search_path={self.DB_SCHEMA},public"
        if database_url:
            return {
                'dsn': database_url,
                'connect_timeout': self.DB_CONNECT_TIMEOUT,
                'options': search_path_option,
            }

        kwargs = {
            'host': self.DB_HOST,
            'port': self.DB_PORT,
            'dbname': self.DB_NAME,
            'user': self.DB_USER,
            'connect_timeout': self.DB_CONNECT_TIMEOUT,
            'sslmode': self.DB_SSLMODE,
            'options': search_path_option,
        }
        if self.DB_PASSWORD is not None:
            kwargs['password'] = self.DB_PASSWORD
        return kwargs
