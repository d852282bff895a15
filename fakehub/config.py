from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App
    app_secret_key: str = "change-me-in-production"
    app_base_url: str = "http://localhost:8000"

    # Fixture store
    database_path: str = ":memory:"
    fixtures_path: str = ""
    fixture_admin_enabled: bool = True

    # Logging
    log_level: str = "info"

    # Rate limiting
    rate_limit_per_minute: int = 600

    # CORS
    cors_origins: str = "http://localhost:3000"

    # Sessions and login
    session_ttl_hours: int = 24
    session_cleanup_interval_seconds: int = 3600
    pending_login_ttl_seconds: int = 300
    pending_login_max_attempts: int = 5
    trusted_device_ttl_days: int = 30
    bcrypt_rounds: int = 12

    # MFA
    totp_period_seconds: int = 30
    totp_digits: int = 6
    totp_drift_steps: int = 1
    backup_code_count: int = 10

    # SSO
    sso_base_url: str = "https://sso.example.com"

    # Listing
    default_per_page: int = 30
    max_per_page: int = 100

    # Simulation
    simulated_latency_ms: int = 0
    log_wait_max_seconds: float = 30.0

    # Repository contents
    max_file_bytes: int = 1_000_000

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
