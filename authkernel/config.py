from __future__ import annotations

import os
import secrets
import tempfile
from enum import Enum
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)

from authkernel.logging import get_logger

logger = get_logger(__name__)

DEFAULT_ROLES = ("USER", "ADMIN", "MODERATOR", "SUPERADMIN")
MIN_SECRET_LENGTH = 32


class Environment(str, Enum):
    """Deployment environment; production turns on Secure cookies."""

    DEVELOPMENT = "development"
    TEST = "test"
    PRODUCTION = "production"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


def _load_or_create_secret(fs_root: Path, filename: str) -> str:
    """Return the secret persisted at ``fs_root/filename``, generating it once.

    Persisting the generated value keeps issued tokens valid across restarts.
    """
    secret_path = fs_root / filename
    try:
        fs_root.mkdir(parents=True, exist_ok=True)
        os.chmod(fs_root, 0o700)
    except PermissionError:
        # Directory may already exist with different permissions (e.g., in container)
        pass

    if secret_path.exists() and not secret_path.is_symlink():
        try:
            persisted = secret_path.read_text().strip()
        except OSError as exc:
            logger.error("token_secret_read_failed", error=str(exc), path=str(secret_path))
        else:
            if len(persisted) >= MIN_SECRET_LENGTH:
                return persisted

    generated = secrets.token_urlsafe(64)
    fd, tmp_path = tempfile.mkstemp(dir=str(fs_root), prefix=f"{filename}_", suffix=".tmp")
    try:
        try:
            os.write(fd, generated.encode())
            os.fchmod(fd, 0o600)
        finally:
            os.close(fd)
        os.replace(tmp_path, str(secret_path))
    except OSError as exc:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
        logger.error("token_secret_persist_failed", error=str(exc), path=str(secret_path))
        raise RuntimeError(
            f"Unable to persist {filename}; set the secret explicitly or make SHARED_FS_ROOT writable"
        ) from exc
    logger.info("token_secret_generated", path=str(secret_path))
    return generated


_SECRET_FILES = {
    "access_token_secret": ".access_token_secret",
    "refresh_token_secret": ".refresh_token_secret",
}


class Settings(BaseModel):
    """Runtime settings for the credential service.

    Every field is bound to an environment variable; ``from_env`` reads the
    process environment first and falls back to a local ``.env`` file.
    """

    database_url: str = env_field(
        "postgresql://localhost:5432/authkernel", "DATABASE_URL"
    )
    shared_fs_root: str = env_field("/srv/authkernel", "SHARED_FS_ROOT")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Allow the runtime to be rebuilt between tests",
    )
    environment: Environment = env_field(Environment.DEVELOPMENT, "ENVIRONMENT")
    access_token_secret: str = env_field(
        None, "ACCESS_TOKEN_SECRET", validate_default=True
    )
    refresh_token_secret: str = env_field(
        None, "REFRESH_TOKEN_SECRET", validate_default=True
    )
    access_token_ttl_minutes: int = env_field(15, "ACCESS_TOKEN_TTL_MINUTES", gt=0)
    refresh_token_ttl_minutes: int = env_field(
        7 * 24 * 60, "REFRESH_TOKEN_TTL_MINUTES", gt=0
    )
    roles: list[str] = env_field(
        list(DEFAULT_ROLES),
        "ROLES",
        description="Comma-separated set of recognized roles",
    )
    default_role: str = env_field("USER", "DEFAULT_ROLE")
    allow_signup: bool = env_field(True, "ALLOW_SIGNUP")
    revoke_on_reuse: bool = env_field(
        False,
        "REVOKE_ON_REUSE",
        description="Clear the stored refresh token when a superseded one is replayed",
    )
    store_timeout_ms: int = env_field(5000, "STORE_TIMEOUT_MS", gt=0)

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @property
    def cookie_secure(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @field_validator("roles", mode="before")
    @classmethod
    def _split_roles(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = [part for part in value.split(",")]
        if isinstance(value, (list, tuple)):
            cleaned = [str(part).strip().upper() for part in value if str(part).strip()]
            if not cleaned:
                raise ValueError("at least one role must be configured")
            return list(dict.fromkeys(cleaned))
        return value

    @field_validator("default_role", mode="before")
    @classmethod
    def _normalize_default_role(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("access_token_secret", "refresh_token_secret", mode="before")
    @classmethod
    def _ensure_token_secret(cls, value: str | None, info: ValidationInfo) -> str:
        if value:
            if len(value) < MIN_SECRET_LENGTH:
                raise ValueError(
                    f"{info.field_name} must be at least {MIN_SECRET_LENGTH} characters"
                )
            return value
        fs_root = Path(info.data.get("shared_fs_root") or "/srv/authkernel")
        return _load_or_create_secret(fs_root, _SECRET_FILES[info.field_name])

    @model_validator(mode="after")
    def _check_consistency(self) -> "Settings":
        if self.access_token_secret == self.refresh_token_secret:
            raise ValueError("access and refresh token secrets must differ")
        if self.default_role not in self.roles:
            raise ValueError(f"default_role {self.default_role!r} is not a configured role")
        return self


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
