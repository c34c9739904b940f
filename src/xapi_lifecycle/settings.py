"""Connection settings from environment variables."""

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Pool master connection settings.

    All settings can be overridden via environment variables with the
    XAPI_LIFECYCLE_ prefix.
    Example: XAPI_LIFECYCLE_URL=https://xcp-master.lan
    """

    model_config = SettingsConfigDict(
        env_prefix="XAPI_LIFECYCLE_",
        extra="ignore",
    )

    url: str | None = None
    username: str = "root"
    password: SecretStr = Field(default=SecretStr(""))

    ignore_ssl: bool = False
    """Accept self-signed pool certificates."""

    # Testing/Debug
    trace_calls: bool = False
    """Log every remote call and its arguments at DEBUG level."""
