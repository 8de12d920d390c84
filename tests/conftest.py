import os

# Settings are cached on first use, so the environment must be in place
# before any project module is imported by the test modules.
os.environ.setdefault("FINANCE_DATABASE_URL", "sqlite://")
os.environ.setdefault("FINANCE_SCHEDULER_ENABLED", "0")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("FRONTEND_URL_DEV", "http://localhost:5173")
os.environ.pop("JWT_ADMIN_SECRET", None)
os.environ.pop("SENDGRID_API_KEY", None)
os.environ.pop("GEMINI_API_KEY", None)
