import os


def _env_float(name, default):
    value = os.environ.get(name)
    return float(value) if value not in (None, "") else default


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

    # --- Payment provider (mock gateway) ---
    # Artificial latency per charge call, in seconds.
    PROVIDER_LATENCY_SECONDS = _env_float("PROVIDER_LATENCY_SECONDS", 0.5)
    # Optional seed for the provider's random generator (reproducible runs).
    PROVIDER_SEED = os.environ.get("PROVIDER_SEED") or None

    # --- Charge endpoint ---
    CHARGE_RATE_LIMIT = os.environ.get("CHARGE_RATE_LIMIT", "60 per minute")

    # --- Operations ---
    # STARTED records older than this are reported by `flask stuck-requests`.
    STUCK_AFTER_MINUTES = int(os.environ.get("STUCK_AFTER_MINUTES", 15))

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

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


class DevConfig(Config):
    """Local development."""

    DEBUG = True


class TestConfig(Config):
    """Testing: in-memory SQLite, zero provider latency, rate limits off."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    PROVIDER_LATENCY_SECONDS = 0
    PROVIDER_SEED = None
    RATELIMIT_ENABLED = False  # disable rate limiting in tests
    STUCK_AFTER_MINUTES = 15

    @staticmethod
    def validate():
        """Skip validation in test mode, everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
