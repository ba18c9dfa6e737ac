"""Configuration management for the investdesk service."""
from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml


DEFAULT_TOKEN_TTL_DAYS = 30
DEFAULT_BCRYPT_ROUNDS = 12

_ENV_KEYS = {
    "jwt_secret": "INVESTDESK_JWT_SECRET",
    "jwt_algorithm": "INVESTDESK_JWT_ALGORITHM",
    "token_ttl_days": "INVESTDESK_TOKEN_TTL_DAYS",
    "database_path": "INVESTDESK_DB_PATH",
    "bcrypt_rounds": "INVESTDESK_BCRYPT_ROUNDS",
    "environment": "INVESTDESK_ENV",
}


class ConfigurationError(RuntimeError):
    """Raised when the service cannot start with the supplied configuration."""


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "investdesk.sqlite3").resolve(strict=False)


@dataclass(frozen=True)
class Settings:
    """Process-wide settings shared by the token service and the stores."""

    jwt_secret: str
    database_path: Path
    jwt_algorithm: str = "HS256"
    token_ttl: timedelta = timedelta(days=DEFAULT_TOKEN_TTL_DAYS)
    bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS
    environment: str = "production"

    @property
    def is_development(self) -> bool:
        return self.environment.strip().lower() in {"development", "dev"}

    @staticmethod
    def from_dict(data: Mapping[str, object], base_path: Path | None = None) -> "Settings":
        """Create :class:`Settings` from raw dictionary data."""

        secret = str(data.get("jwt_secret") or "").strip()
        if not secret:
            raise ConfigurationError(
                "A JWT signing secret is required. Set INVESTDESK_JWT_SECRET before starting the service."
            )

        raw_path = data.get("database_path")
        if raw_path:
            candidate = Path(str(raw_path)).expanduser()
            if not candidate.is_absolute() and base_path is not None:
                candidate = base_path / candidate
            database_path = candidate.resolve(strict=False)
        else:
            database_path = resolve_database_path(None)

        try:
            ttl_days = int(data.get("token_ttl_days", DEFAULT_TOKEN_TTL_DAYS))
            rounds = int(data.get("bcrypt_rounds", DEFAULT_BCRYPT_ROUNDS))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid numeric configuration value: {exc}") from exc

        if ttl_days < 1:
            raise ConfigurationError("token_ttl_days must be at least 1")
        if not 4 <= rounds <= 31:
            raise ConfigurationError("bcrypt_rounds must be between 4 and 31")

        return Settings(
            jwt_secret=secret,
            database_path=database_path,
            jwt_algorithm=str(data.get("jwt_algorithm") or "HS256"),
            token_ttl=timedelta(days=ttl_days),
            bcrypt_rounds=rounds,
            environment=str(data.get("environment") or "production"),
        )


def resolve_config_path(env_value: Optional[str]) -> Optional[Path]:
    """Resolve the path to the optional YAML configuration file."""
    if not env_value:
        return None
    return Path(env_value).expanduser().resolve(strict=False)


def _read_config_file(config_path: Path) -> Dict[str, object]:
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Configuration file {config_path} must contain a mapping")
    return raw


def load_settings(
    config_path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Build settings from an optional YAML file overlaid with environment variables."""

    env = os.environ if environ is None else environ
    if config_path is None:
        config_path = resolve_config_path(env.get("INVESTDESK_CONFIG"))

    data: Dict[str, object] = {}
    base_path: Path | None = None
    if config_path is not None:
        data.update(_read_config_file(config_path))
        base_path = config_path.parent

    for key, env_name in _ENV_KEYS.items():
        value = env.get(env_name)
        if value:
            data[key] = value

    return Settings.from_dict(data, base_path=base_path)


__all__ = [
    "ConfigurationError",
    "Settings",
    "load_settings",
    "resolve_config_path",
    "resolve_database_path",
]
