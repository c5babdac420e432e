from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    site_url: str = "https://wardstudio.com"
    checkout_site_url: str | None = None
    strategy_call_url: str = "https://cal.com/zechariah-ward-dl8qoz/template-setup-configuration-call"
    secure_upload_url: str = "#"

    stripe_secret_key: str | None = None
    stripe_publishable_key: str | None = None
    stripe_webhook_secret: str | None = None
    # true | false | auto (auto = live when the secret key looks valid)
    stripe_checkout_live_mode: str = "auto"
    stripe_checkout_allow_placeholder: bool = False
    stripe_success_url: str | None = None
    stripe_cancel_url: str | None = None
    stripe_webhook_tolerance_seconds: int = 300
    # verify | webhook: which path owns the confirmation email
    payment_confirmation_source: str = "verify"

    resend_api_key: str | None = None
    resend_api_url: str = "https://api.resend.com/emails"
    email_from: str = "Ward Studio <orders@wardstudio.com>"
    resend_fallback_from: str = "Ward Studio <onboarding@resend.dev>"
    email_internal_to: str = "zech@wardstudio.com"
    support_email: str = "support@wardstudio.com"
    service_email: str = "services@wardstudio.com"
    email_rate_limit_retries: int = 3
    email_retry_base_seconds: float = 0.45
    # database | memory
    email_dedup_backend: str = "database"

    cal_webhook_secret: str | None = None

    orders_rate_limit: int = 20
    checkout_rate_limit: int = 10
    onboarding_rate_limit: int = 10
    email_rate_limit: int = 5
    rate_limit_window_seconds: int = 60

    http_timeout_seconds: float = 15.0
    health_probe_timeout_seconds: float = 4.5

    database_url: str | None = None
    database_pool_size: int = 5
    database_max_overflow: int = 5
    database_pool_timeout_seconds: int = 30
    database_pool_recycle_seconds: int = 1800

    monitoring_webhook_url: str | None = None

    env: str = "dev"
    log_level: str = "info"

    @property
    def is_production(self) -> bool:
        return str(self.env or "").lower() in {"prod", "production"}

    @property
    def internal_recipients(self) -> list[str]:
        return [part.strip() for part in self.email_internal_to.split(",") if part.strip()]

    @property
    def webhook_owns_confirmation_email(self) -> bool:
        return self.payment_confirmation_source.strip().lower() == "webhook"


settings = Settings()
