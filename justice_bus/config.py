# =============================================================================
# justice_bus/config.py
# Offline Core Configuration
# =============================================================================
"""
Configuration for the offline-support core.

Values come from three layers, later layers winning:
1. Dataclass defaults
2. The [offline] table of a secrets.toml file
3. Environment variables (JUSTICE_BUS_*)

Expected secrets.toml format:
[offline]
api_base_url = "https://justicebus.example.org"
data_dir = "local_data"
request_timeout = 15
verification_expiry_hours = 24
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import toml

from justice_bus.errors import ConfigurationError
from justice_bus.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SECRETS_PATH = Path(".streamlit") / "secrets.toml"

ENV_OVERRIDES = {
    "JUSTICE_BUS_API_URL": "api_base_url",
    "JUSTICE_BUS_DATA_DIR": "data_dir",
    "JUSTICE_BUS_TIMEOUT": "request_timeout",
}


@dataclass
class OfflineConfig:
    """Configuration for the offline store, sync queue and adapters."""

    # ==================== STORAGE ====================
    data_dir: Path = Path("local_data")
    db_filename: str = "justice-bus-offline.db"
    flat_filename: str = "justice-bus-legacy.json"

    # ==================== NETWORK ====================
    api_base_url: str = "http://localhost:3000"
    request_timeout: float = 15.0
    headers: Dict[str, str] = field(default_factory=dict)

    # ==================== ENDPOINTS ====================
    events_path: str = "/api/events"
    notifications_path: str = "/api/notifications/process-queued"
    verify_path: str = "/api/auth/callback/credentials"

    # ==================== POLICY ====================
    verification_expiry_hours: float = 24.0
    events_max_age_hours: float = 24.0
    max_replay_attempts: Optional[int] = None
    backoff_base: float = 0.0

    # ==================== CONNECTIVITY ====================
    start_monitoring: bool = False
    check_interval_online: float = 30.0
    check_interval_offline: float = 10.0

    @property
    def db_path(self) -> Path:
        return Path(self.data_dir) / self.db_filename

    @property
    def flat_path(self) -> Path:
        return Path(self.data_dir) / self.flat_filename

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> OfflineConfig:
        """Build a config from a mapping, coercing each value to its field type."""
        known = {f.name: f for f in fields(cls)}
        kwargs: Dict[str, Any] = {}

        for key, value in values.items():
            if key not in known:
                logger.warning(f"Ignoring unknown offline config key: {key}")
                continue
            kwargs[key] = _coerce(key, value, cls.__dataclass_fields__[key].default)

        return cls(**kwargs)


def _coerce(key: str, value: Any, default: Any) -> Any:
    """Coerce a raw TOML/env value to the type of the field default."""
    if value is None:
        return None

    try:
        if isinstance(default, bool):
            if isinstance(value, str):
                return value.strip().lower() in ("1", "true", "yes", "on")
            return bool(value)
        if isinstance(default, Path):
            return Path(value)
        if isinstance(default, float):
            return float(value)
        if key == "max_replay_attempts":
            return int(value)
        if isinstance(default, str):
            return str(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Invalid value for {key}: {value!r}",
            config_key=key,
            expected_type=type(default).__name__ if default is not None else "int",
        ) from e

    return value


def load_config(path: Optional[Path] = None, env: Optional[Dict[str, str]] = None) -> OfflineConfig:
    """
    Load the offline configuration.

    Args:
        path: secrets.toml location (default: .streamlit/secrets.toml)
        env: Environment mapping (default: os.environ)

    Returns:
        OfflineConfig
    """
    env = os.environ if env is None else env
    values: Dict[str, Any] = {}

    secrets_path = Path(path) if path else DEFAULT_SECRETS_PATH
    if secrets_path.exists():
        try:
            secrets = toml.load(secrets_path)
        except (toml.TomlDecodeError, OSError) as e:
            raise ConfigurationError(
                f"Could not read {secrets_path}: {e}",
                config_key="offline",
            ) from e
        values.update(secrets.get("offline", {}))
    elif path is not None:
        raise ConfigurationError(f"Config file not found: {secrets_path}", config_key="offline")

    for env_key, field_name in ENV_OVERRIDES.items():
        if env.get(env_key):
            values[field_name] = env[env_key]

    return OfflineConfig.from_dict(values)
