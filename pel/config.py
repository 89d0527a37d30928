from pathlib import Path
from typing import Callable, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SessionConfig(BaseSettings):
    """Session configuration, overridable through ``PEL_*`` environment variables."""

    # Worker settings
    cwd: Optional[str] = Field(default=None, description="Worker working directory")
    kernel_name: str = Field(default="python3", min_length=1)
    startup_timeout: float = Field(default=60.0, gt=0)

    log_level: Literal["debug", "info", "warning", "error", "critical"] = Field(
        default="info"
    )

    # Pre-execution hook for ``run`` tasks; code only, never read from the environment
    transform: Optional[Callable[[str], str]] = Field(default=None, exclude=True)

    model_config = SettingsConfigDict(
        env_prefix="PEL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("cwd")
    @classmethod
    def validate_cwd(cls, v):
        if v is None:
            return v
        p = Path(v).expanduser()
        if not p.is_dir():
            raise ValueError(f"Working directory does not exist: {v}")
        return str(p.resolve())


def load_config(**overrides) -> SessionConfig:
    """Build a validated config from the environment plus keyword overrides.

    Raises:
        pydantic.ValidationError: on invalid values.
    """
    return SessionConfig(**overrides)
