"""Backend settings."""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    service_name: str = "space-access-backend"
    debug: bool = False
    port: int = 8000

    database_url: str = "sqlite+aiosqlite:///./space_access.db"

    # Bearer tokens issued by the auth provider (HS256, subject in "sub")
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"

    # Lock actuator: "simulated" | "http"
    lock_backend: str = "simulated"
    lock_base_url: str = "http://192.168.1.100"
    lock_user: str = "admin"
    lock_password: str = ""
    lock_timeout_seconds: float = 1.0

    # Simulated actuator
    lock_simulated_latency_seconds: float = 0.2
    lock_simulated_success_rate: float = 0.95

    # Wall-clock evaluation of operating hours when a resource has no timezone
    default_timezone: str = "UTC"

    # TOTP parameters
    otp_digits: int = 6
    otp_step_seconds: int = 30
    otp_window: int = 1

    # 0 disables the limit
    max_active_credentials_per_subject: int = 3

    # 0 disables the background sweep
    expiry_sweep_interval_seconds: int = 60
    audit_retry_interval_seconds: int = 15

    allowed_origins: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
