import os


class Config:
    """Base configuration. Shared across all environments."""

    # --- Required ---
    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or None

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # --- Task filtering ---
    FILTER_DEFAULT_PER_PAGE = int(os.environ.get("FILTER_DEFAULT_PER_PAGE", 15))
    FILTER_MAX_PER_PAGE = 100
    FILTERS_JSON_MAX_LENGTH = 10000
    # Where tasks without a value land when sorting by a board column: "last" | "first"
    FILTER_SORT_MISSING_VALUES = os.environ.get("FILTER_SORT_MISSING_VALUES", "last")
    FILTER_TEXT_LEAF_WARNING_THRESHOLD = 3
    FILTER_RATE_LIMIT = os.environ.get("FILTER_RATE_LIMIT", "120 per minute")

    # --- Bulk operations ---
    BULK_MAX_TASKS = 500

    # --- Session / cookies ---
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
        ]
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )
        missing_policy = os.environ.get("FILTER_SORT_MISSING_VALUES", "last")
        if missing_policy not in ("first", "last"):
            raise RuntimeError(
                "FILTER_SORT_MISSING_VALUES must be 'first' or 'last', "
                f"got '{missing_policy}'"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True
    SESSION_COOKIE_SECURE = False


class TestConfig(Config):
    """Testing — in-memory SQLite, rate limits off."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    FILTER_SORT_MISSING_VALUES = "last"
    RATELIMIT_ENABLED = False  # disable rate limiting in tests
    SESSION_COOKIE_SECURE = False
    SERVER_NAME = "localhost"

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False
    SESSION_COOKIE_SECURE = True


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
