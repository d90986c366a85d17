from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ---- App ----
    app_env: str = "local"  # local|dev|prod
    database_url: str = "sqlite:///./rentledger.db"
    storage_backend: str = "sql"  # sql|memory

    # ---- CORS (used by main.py) ----
    cors_allow_origins: list[str] | str = ["*"]

    # ---- Reconciliation ----
    balance_tolerance: float = 0.01
    rent_match_tolerance: float = 0.01
    default_currency: str = "EUR"
    rent_income_category: str = "Rent Income"

    # ---- Reminders ----
    rent_due_day: int = 1
    reminder_final_grace_days: int = 14
    reminder_channel: str = "email"  # email|sms|whatsapp

    # ---- External services ----
    extraction_base_url: str | None = None
    extraction_api_key: str | None = None
    extraction_timeout_seconds: float = 60.0

    notification_base_url: str | None = None
    notification_api_key: str | None = None

    # ---- Auth (dev header mode only) ----
    auth_mode: str = "dev"  # dev
    dev_auto_provision: bool = True
    dev_header_user_email: str = "X-User-Email"

    # ---- Celery ----
    celery_broker_url: str | None = None
    celery_result_backend: str | None = None

    def model_post_init(self, __context) -> None:
        env = (self.app_env or "local").strip().lower()
        is_prod = env in ("prod", "production")

        backend = (self.storage_backend or "sql").strip().lower()
        if backend not in ("sql", "memory"):
            raise ValueError(f"storage_backend must be sql|memory, got {self.storage_backend!r}")

        if is_prod:
            if (self.auth_mode or "").strip().lower() == "dev":
                raise ValueError("SECURITY: auth_mode=dev is not allowed in prod")
            if backend == "memory":
                raise ValueError("storage_backend=memory is not allowed in prod")

            origins = self.cors_allow_origins
            if origins == "*" or origins == ["*"] or (isinstance(origins, str) and "*" in origins):
                raise ValueError("SECURITY: cors_allow_origins wildcard is not allowed in prod")


settings = Settings()
