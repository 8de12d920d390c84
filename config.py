import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        environment: str,
        jwt_secret: Optional[str],
        jwt_admin_secret: Optional[str],
        access_secret: Optional[str],
        refresh_secret: Optional[str],
        reset_secret: Optional[str],
        frontend_url_dev: str,
        frontend_url_prod: str,
        gemini_api_key: Optional[str],
        gemini_model: str,
        sendgrid_api_key: Optional[str],
        sendgrid_from_email: Optional[str],
        mail_timeout_secs: float,
        scheduler_enabled: bool,
        create_schema: bool,
    ) -> None:
        self.database_url = database_url
        self.environment = environment
        self.jwt_secret = jwt_secret
        self.jwt_admin_secret = jwt_admin_secret
        self.access_secret = access_secret
        self.refresh_secret = refresh_secret
        self.reset_secret = reset_secret
        self.frontend_url_dev = frontend_url_dev
        self.frontend_url_prod = frontend_url_prod
        self.gemini_api_key = gemini_api_key
        self.gemini_model = gemini_model
        self.sendgrid_api_key = sendgrid_api_key
        self.sendgrid_from_email = sendgrid_from_email
        self.mail_timeout_secs = mail_timeout_secs
        self.scheduler_enabled = scheduler_enabled
        self.create_schema = create_schema

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def frontend_url(self) -> str:
        return self.frontend_url_prod if self.is_production else self.frontend_url_dev

    @property
    def allowed_origins(self) -> list[str]:
        return [url for url in (self.frontend_url_dev, self.frontend_url_prod) if url]


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("FINANCE_DATABASE_URL")
    if not database_url:
        default_db = _ensure_data_dir() / "finance.db"
        database_url = f"sqlite:///{default_db}"
    environment = os.getenv("FINANCE_ENV") or os.getenv("NODE_ENV") or "development"
    jwt_secret = os.getenv("JWT_SECRET") or None
    return Settings(
        database_url=database_url,
        environment=environment.strip().lower(),
        jwt_secret=jwt_secret,
        jwt_admin_secret=os.getenv("JWT_ADMIN_SECRET") or jwt_secret,
        access_secret=os.getenv("ACCESS_SECRET") or jwt_secret,
        refresh_secret=os.getenv("REFRESH_SECRET") or jwt_secret,
        reset_secret=os.getenv("RESET_SECRET") or jwt_secret,
        frontend_url_dev=os.getenv("FRONTEND_URL_DEV", "http://localhost:5173"),
        frontend_url_prod=os.getenv("FRONTEND_URL_PROD", ""),
        gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-1.5-flash"),
        sendgrid_api_key=os.getenv("SENDGRID_API_KEY") or None,
        sendgrid_from_email=os.getenv("SENDGRID_FROM_EMAIL") or None,
        mail_timeout_secs=float(os.getenv("FINANCE_MAIL_TIMEOUT_SECS", "10")),
        scheduler_enabled=_env_flag("FINANCE_SCHEDULER_ENABLED", "1"),
        create_schema=_env_flag("FINANCE_CREATE_SCHEMA", "1"),
    )
