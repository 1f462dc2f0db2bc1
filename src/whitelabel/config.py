"""
Runtime settings.

Values are read from the environment with the ``WHITELABEL_`` prefix,
e.g. ``WHITELABEL_DATABASE_PATH=/var/lib/whitelabel/auth.db``.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AuthSettings(BaseSettings):
    """Settings for the access-control core."""

    model_config = SettingsConfigDict(
        env_prefix="WHITELABEL_",
        env_file=".env",
        extra="ignore",
    )

    database_path: Path = Path("data") / "whitelabel.db"
    busy_timeout_seconds: float = Field(default=5.0, gt=0)
    # 0 disables session expiry
    session_lifetime_hours: int = Field(default=24 * 14, ge=0)
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    token_bytes: int = Field(default=32, ge=16)
    log_level: str = "INFO"


@lru_cache
def get_settings() -> AuthSettings:
    return AuthSettings()
