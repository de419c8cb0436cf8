"""Formgate configuration via pydantic-settings."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings

from .schemas.form import SmtpAuth, SmtpConfig


class FormgateSettings(BaseSettings):
    environment: str = "development"
    app_title: str = "Formgate"
    log_level: str = "INFO"

    forms_dir: str = "forms"
    storage_dir: str = "responses"

    # Public form hardening
    rate_limit_window_seconds: float = 60
    rate_limit_max_requests: int = 10
    rate_limit_max_identifiers: int = 10000
    honeypot_field: str = "_gotcha"
    csrf_field: str = "_csrf"
    csrf_secret: str = ""
    csrf_max_age_seconds: int = 3600
    trust_forwarded_for: bool = False

    # SMTP (optional, BYOK). Per-form smtp blocks take precedence.
    smtp_host: str | None = None
    smtp_port: int = 465
    smtp_secure: bool = True
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_from: str | None = None
    smtp_timeout_seconds: float = 15

    model_config = {"env_prefix": "FORMGATE_", "env_file": ".env", "extra": "ignore"}

    @property
    def project_dir(self) -> Path:
        return Path.cwd()

    @property
    def forms_path(self) -> Path:
        path = Path(self.forms_dir)
        if not path.is_absolute():
            path = self.project_dir / path
        return path

    @property
    def storage_path(self) -> Path:
        path = Path(self.storage_dir)
        if not path.is_absolute():
            path = self.project_dir / path
        return path

    @property
    def csrf_enabled(self) -> bool:
        return bool(self.csrf_secret.strip())

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_user)

    @property
    def default_smtp(self) -> SmtpConfig | None:
        """Global SMTP account, or None when not configured."""
        if not self.smtp_configured:
            return None
        return SmtpConfig(
            host=self.smtp_host,
            port=self.smtp_port,
            secure=self.smtp_secure,
            auth=SmtpAuth(user=self.smtp_user, password=self.smtp_password or ""),
            from_address=self.smtp_from,
        )

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() in {"prod", "production"}


settings = FormgateSettings()
