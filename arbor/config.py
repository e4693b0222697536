"""
Config system - typed application settings.

Settings are merged with precedence:
overrides > environment variables (ARBOR_ prefix) > .env file > defaults
"""

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import dotenv_values

ENV_PREFIX = "ARBOR_"


class ConfigError(Exception):
    """Raised when a setting cannot be parsed."""
    pass


@dataclass(frozen=True)
class Settings:
    """
    Application settings.

    Attributes:
        env: Deployment environment ("development", "production", "test")
        expose_errors: Reveal error messages and stack traces to clients.
            Defaults to True outside production.
        body_limit: Maximum request body size read by body parsers (bytes)
        host: Bind address used by ``arbor serve``
        port: Bind port used by ``arbor serve``
        log_level: Root log level configured by the CLI
    """

    env: str = "development"
    expose_errors: Optional[bool] = None
    body_limit: int = 1024 * 1024
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "info"

    @property
    def production(self) -> bool:
        return self.env.lower() == "production"

    @property
    def reveal_errors(self) -> bool:
        """Resolved ``expose_errors`` flag."""
        if self.expose_errors is None:
            return not self.production
        return self.expose_errors

    @classmethod
    def load(
        cls,
        env_file: Optional[str] = ".env",
        env_prefix: str = ENV_PREFIX,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> "Settings":
        """
        Load settings from the .env file, the environment and overrides.

        Args:
            env_file: Path to .env file (ignored if missing)
            env_prefix: Prefix for environment variables
            overrides: Manual overrides (highest precedence)
        """
        raw: Dict[str, Any] = {}

        if env_file and Path(env_file).exists():
            for key, value in dotenv_values(env_file).items():
                if key.startswith(env_prefix) and value is not None:
                    raw[key[len(env_prefix):].lower()] = value

        for key, value in os.environ.items():
            if key.startswith(env_prefix):
                raw[key[len(env_prefix):].lower()] = value

        if overrides:
            raw.update(overrides)

        return cls()._merge(raw)

    def with_overrides(self, **overrides: Any) -> "Settings":
        return self._merge(overrides)

    def _merge(self, raw: Dict[str, Any]) -> "Settings":
        known = {f.name: f for f in fields(self)}
        values: Dict[str, Any] = {}
        for key, value in raw.items():
            if key not in known:
                continue
            values[key] = _parse_value(key, value, getattr(self, key))
        return replace(self, **values)


def _parse_value(key: str, value: Any, current: Any) -> Any:
    """Coerce string values to the type of the current setting."""
    if not isinstance(value, str):
        return value
    lowered = value.strip().lower()
    if key == "expose_errors" or isinstance(current, bool):
        if lowered in ("true", "yes", "1", "on"):
            return True
        if lowered in ("false", "no", "0", "off"):
            return False
        raise ConfigError(f"Invalid boolean for {key}: {value!r}")
    if isinstance(current, int):
        try:
            return int(lowered)
        except ValueError:
            raise ConfigError(f"Invalid integer for {key}: {value!r}") from None
    return value.strip()


def configure_logging(level: str = "info") -> None:
    """Basic logging setup used by the CLI."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
