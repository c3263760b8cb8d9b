"""Environment-aware configuration for the case service."""
import os


class BaseConfig:
    def __init__(self) -> None:
        # Defaults for local dev: SQLite db and a non-empty secret. Override via env for production.
        self.SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-me")
        db_url = os.getenv("DATABASE_URL")
        # If DATABASE_URL points to a placeholder host (e.g., db_host) or is missing, fall back to SQLite for local dev.
        if db_url and "db_host" not in db_url:
            self.SQLALCHEMY_DATABASE_URI = db_url
        else:
            self.SQLALCHEMY_DATABASE_URI = os.getenv(
                "SQLITE_URL",
                f"sqlite:///{os.path.join(os.getcwd(), 'instance', 'cases.db')}",
            )
        self.SQLALCHEMY_TRACK_MODIFICATIONS = False
        self.SQLALCHEMY_ENGINE_OPTIONS = {
            "pool_size": int(os.getenv("DB_POOL_SIZE", 10)),
            "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", 20)),
            "pool_timeout": int(os.getenv("DB_POOL_TIMEOUT", 30)),
            "pool_recycle": int(os.getenv("DB_POOL_RECYCLE", 1800)),
        }
        self.PREFERRED_URL_SCHEME = os.getenv("PREFERRED_URL_SCHEME", "https")
        # JSON API authenticated by bearer tokens; CSRF is exempted per blueprint.
        self.WTF_CSRF_ENABLED = True
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.LOG_DIR = os.getenv("LOG_DIR", os.path.join(os.getcwd(), "logs"))
        self.CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

        # Identity
        self.JWT_SECRET = os.getenv("JWT_SECRET", "")
        self.ADMIN_EMAIL = (os.getenv("ADMIN_EMAIL") or "").strip().lower()
        self.ADMIN_SECRET_TOKEN = os.getenv("ADMIN_SECRET_TOKEN", "")

        # Shared mailbox (Gmail API)
        self.GMAIL_USER = (os.getenv("GMAIL_USER") or "").strip().lower()
        self.GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID") or os.getenv("GMAIL_CLIENT_ID", "")
        self.GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET") or os.getenv("GMAIL_CLIENT_SECRET", "")
        self.GMAIL_REFRESH_TOKEN = os.getenv("GMAIL_REFRESH_TOKEN") or os.getenv("GMAIL_OAUTH_REFRESH_TOKEN", "")
        self.GMAIL_HTTP_TIMEOUT = float(os.getenv("GMAIL_HTTP_TIMEOUT", 20))
        self.MAIL_SYNC_WINDOW_DAYS = int(os.getenv("MAIL_SYNC_WINDOW_DAYS", 7))
        self.MAIL_SYNC_BATCH_LIMIT = min(int(os.getenv("MAIL_SYNC_BATCH_LIMIT", 500)), 500)

        # Push notifications (FCM HTTP v1)
        self.FIREBASE_PROJECT_ID = os.getenv("FIREBASE_PROJECT_ID", "")
        self.FIREBASE_CLIENT_EMAIL = os.getenv("FIREBASE_CLIENT_EMAIL", "")
        self.FIREBASE_PRIVATE_KEY = (os.getenv("FIREBASE_PRIVATE_KEY") or "").replace("\\n", "\n")

        # Object storage
        self.UPLOAD_FOLDER = os.getenv("UPLOAD_FOLDER", os.path.join(os.getcwd(), "instance", "uploads"))
        self.UPLOAD_BASE_URL = os.getenv("UPLOAD_BASE_URL", "/uploads")
        self.MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", 10 * 1024 * 1024))
        self.MAX_CONTENT_LENGTH = int(os.getenv("MAX_REQUEST_BYTES", 25 * 1024 * 1024))

        self.NOTIFICATION_PAGE_SIZE = int(os.getenv("NOTIFICATION_PAGE_SIZE", 25))
        self.SSE_KEEPALIVE_SECONDS = int(os.getenv("SSE_KEEPALIVE_SECONDS", 25))


class DevelopmentConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.DEBUG = True
        self.ENV = "development"


class ProductionConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.DEBUG = False
        self.ENV = "production"


class TestingConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.TESTING = True
        self.ENV = "testing"
        self.SQLALCHEMY_DATABASE_URI = "sqlite://"
        # In-memory SQLite uses a static pool; QueuePool sizing does not apply.
        self.SQLALCHEMY_ENGINE_OPTIONS = {}
        self.WTF_CSRF_ENABLED = False
        self.LOG_LEVEL = "WARNING"
        self.JWT_SECRET = "test-jwt-secret-for-owner-tokens-0001"
        self.ADMIN_EMAIL = "admin@claimy.test"
        self.ADMIN_SECRET_TOKEN = "test-admin-token-for-admin-routes-0001"
        self.GMAIL_USER = "support@claimy.test"
        self.UPLOAD_BASE_URL = "https://files.claimy.test/uploads"
        self.SSE_KEEPALIVE_SECONDS = 1
