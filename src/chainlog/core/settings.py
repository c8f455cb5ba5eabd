"""
Configuration models for chainlog using Pydantic v2 Settings.

Settings are grouped by concern (store, log file, changelog feed, directory
layout, verification, hardware token, notifications). Values come from an
optional JSON config file, overridden by ``CHAINLOG_``-prefixed environment
variables using ``__`` as the nested delimiter, e.g.
``CHAINLOG_VERIFY__MAX_ELISION_STEPS=6``.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError


class StoreSettings(BaseModel):
    sqlite_path: str = Field(
        default="chainlog.db", description="SQLite metadata/projection database"
    )


class LogFileSettings(BaseModel):
    path: str = Field(
        default="changelog.jsonl", description="Append-only signed log (JSON Lines)"
    )
    file_mode: int = Field(
        default=0o600, description="Permission bits used when creating the log"
    )


class ChangelogSettings(BaseModel):
    """Remote change feed polling parameters."""

    base: str = Field(default="cn=changelog", description="Changelog search base")
    poll_interval_seconds: float = Field(
        default=1.0, gt=0.0, description="Fixed interval between check() ticks"
    )
    check_size_limit: int = Field(
        default=2,
        ge=2,
        description="Result cap for the continuity check (base serial + one newer)",
    )
    batch_size_limit: int = Field(
        default=2000, ge=1, description="Result cap for a single update() fetch"
    )
    url: str | None = Field(default=None, description="ldaps:// URL of the directory")
    bind_dn: str | None = None
    bind_password: SecretStr | None = None
    timeout_seconds: float = Field(default=10.0, gt=0.0)


class DirectorySettings(BaseModel):
    """Shape of the directory tree the projections understand."""

    suffix: str = Field(default="o=smartdc", description="Root DN of the tree")
    users_ou: str = "users"
    groups_ou: str = "groups"
    operators_cn: str = "operators"
    readers_cn: str = "readers"


class VerifySettings(BaseModel):
    max_elision_steps: int = Field(
        default=4,
        ge=0,
        description="Extra secret rotations tried before a mismatch is terminal",
    )


class TokenSettings(BaseModel):
    slot: int = Field(default=2, ge=1, le=2)
    timeout_seconds: float = Field(
        default=60.0, gt=0.0, description="Upper bound on waiting for a touch"
    )
    challenge_command: str = "ykchalresp"
    program_command: str = "ykpersonalize"


class NotifySettings(BaseModel):
    cloud_name: str = "cloud"
    company: str = ""
    from_address: str = "chainlog@localhost"
    operators: list[str] = Field(default_factory=list)
    operator_prefix: str = "[chainlog] "
    user_prefix: str = ""
    whitelist: list[str] = Field(
        default_factory=list,
        description="User uuids allowed to receive mail; empty means everyone",
    )
    webhook_url: str | None = None
    webhook_secret: str | None = None
    webhook_timeout_seconds: float = Field(default=5.0, gt=0.0)
    alert_throttle_seconds: float = Field(default=4 * 3600.0, ge=0.0)

    @field_validator("operators", "whitelist", mode="before")
    @classmethod
    def _split_csv(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [v.strip() for v in value.split(",") if v.strip()]
        return value


class Settings(BaseSettings):
    """Top-level configuration."""

    store: StoreSettings = Field(default_factory=StoreSettings)
    log: LogFileSettings = Field(default_factory=LogFileSettings)
    changelog: ChangelogSettings = Field(default_factory=ChangelogSettings)
    directory: DirectorySettings = Field(default_factory=DirectorySettings)
    verify: VerifySettings = Field(default_factory=VerifySettings)
    token: TokenSettings = Field(default_factory=TokenSettings)
    notify: NotifySettings = Field(default_factory=NotifySettings)
    enable_metrics: bool = Field(
        default=False, description="Enable Prometheus-compatible metrics"
    )

    model_config = SettingsConfigDict(
        env_prefix="CHAINLOG_",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(config_file: str | Path | None = None) -> Settings:
    """Load settings from an optional JSON file, then apply the environment.

    Environment variables take precedence over file values. Raises
    ``ConfigurationError`` on unreadable files or invalid values.
    """
    file_data: dict[str, Any] = {}
    if config_file is not None:
        path = Path(config_file)
        try:
            file_data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise ConfigurationError(
                f"config file not found: {path}", cause=exc, path=str(path)
            ) from exc
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(
                f"config file unreadable: {path}", cause=exc, path=str(path)
            ) from exc
        if not isinstance(file_data, dict):
            raise ConfigurationError(
                "config file must contain a JSON object", path=str(path)
            )

    try:
        env_only = Settings()
        env_data = env_only.model_dump(exclude_unset=True)
        return Settings.model_validate(_merge(file_data, env_data))
    except ValidationError as exc:
        raise ConfigurationError(f"invalid configuration: {exc}", cause=exc) from exc
