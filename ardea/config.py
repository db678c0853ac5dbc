"""
Ardea configuration - typed settings loaded from the environment.

Precedence (later wins): dataclass defaults < .env file < environment
variables < explicit overrides.

Usage:
    config = ArdeaConfig.from_env(env_file=".env")
    adapter = await configure(config)
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import dotenv_values

__all__ = ["ArdeaConfig", "parse_value"]


def parse_value(value: str) -> Any:
    """Parse string value to appropriate type."""
    # Boolean
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False

    # Number
    try:
        if "." in value:
            return float(value)
        return int(value)
    except ValueError:
        pass

    # JSON
    if value.startswith(("{", "[")):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            pass

    return value


@dataclass
class ArdeaConfig:
    """Settings for the storage connection and the model layer."""

    url: str = "sqlite:///:memory:"
    alias: str = "default"
    slow_query_ms: float = 1000.0
    query_log_enabled: bool = True
    query_log_size: int = 1000
    cache_ttl: int = 3600
    auto_create_indexes: bool = True

    @classmethod
    def from_env(
        cls,
        prefix: str = "ARDEA_",
        env_file: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> "ArdeaConfig":
        """
        Build a config from ``<prefix>*`` variables.

        ``ARDEA_SLOW_QUERY_MS=250`` sets ``slow_query_ms``. Unknown keys are
        ignored so the prefix can be shared with application settings.
        """
        raw: Dict[str, Any] = {}
        if env_file and Path(env_file).exists():
            raw.update(_prefixed(dotenv_values(env_file), prefix))
        raw.update(_prefixed(os.environ, prefix))
        raw.update(overrides or {})
        return cls().merge(raw)

    def merge(self, values: Dict[str, Any]) -> "ArdeaConfig":
        known = {f.name: f for f in fields(self)}
        changes: Dict[str, Any] = {}
        for key, value in values.items():
            spec = known.get(key)
            if spec is None:
                continue
            if isinstance(value, str):
                value = value if spec.type in ("str", str) else parse_value(value)
            if spec.type in ("float", float) and isinstance(value, int) and not isinstance(value, bool):
                value = float(value)
            changes[key] = value
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def _prefixed(source: Any, prefix: str) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in source.items():
        if value is None or not key.startswith(prefix):
            continue
        out[key[len(prefix):].lower()] = value
    return out
