"""
Typed configuration model with precedence-based loader.

Precedence (lowest to highest):
    defaults < config file (YAML) < env vars < CLI flags
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from lmturn.errors import ConfigurationError


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ClientConfig:
    base_url: str = "http://localhost:1234/v1"
    api_key: str = "lm-studio"
    timeout_seconds: float = 30.0
    max_retries: int = 2
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class TurnConfig:
    model: str = "granite-3.1-8b-instruct"
    streaming: bool = True
    timeout_seconds: float | None = None
    max_rounds: int = 10
    options: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolsConfig:
    defer_by_default: bool = False
    deferred: list[str] = field(default_factory=list)
    max_workers: int = 4
    plugins: bool = True


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class LMTurnConfig:
    client: ClientConfig = field(default_factory=ClientConfig)
    turn: TurnConfig = field(default_factory=TurnConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)

    def set(self, dotpath: str, value: Any) -> None:
        """Set a value using dot notation (e.g. ``'turn.model'``)."""
        _apply_dotpath(self, dotpath, value)

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _apply_dotpath(obj: Any, dotpath: str, value: Any) -> None:
    """Walk obj via dotpath and set the final attribute."""
    parts = dotpath.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    if not hasattr(obj, parts[-1]):
        raise ConfigurationError(f"Unknown config key: {dotpath}")
    setattr(obj, parts[-1], value)


def _deep_merge(base: dict, overlay: dict) -> dict:
    """Recursively merge overlay into base, returning a new dict."""
    merged = dict(base)
    for k, v in overlay.items():
        if k in merged and isinstance(merged[k], dict) and isinstance(v, dict):
            merged[k] = _deep_merge(merged[k], v)
        else:
            merged[k] = v
    return merged


def _coerce(value: str, target_type: type) -> Any:
    """Coerce a string env value to the target type."""
    if target_type is bool:
        return value.lower() in ("1", "true", "yes", "on")
    try:
        if target_type is int:
            return int(value)
        if target_type is float:
            return float(value)
    except ValueError as e:
        raise ConfigurationError(f"Expected {target_type.__name__}, got {value!r}") from e
    if target_type is list:
        return [s.strip() for s in value.split(",") if s.strip()]
    return value


def _build_section(cls: type, raw: dict) -> Any:
    """Build a dataclass section from a raw dict, ignoring unknown keys."""
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Section for {cls.__name__} must be a mapping")
    valid_fields = {f.name for f in fields(cls)}
    filtered = {k: v for k, v in raw.items() if k in valid_fields}
    return cls(**filtered)


# ---------------------------------------------------------------------------
# ENV var mapping
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, type]] = {
    "LMSTUDIO_BASE_URL":       ("client.base_url", str),
    "LMSTUDIO_API_KEY":        ("client.api_key", str),
    "LMSTUDIO_TIMEOUT":        ("client.timeout_seconds", float),
    "LMSTUDIO_MAX_RETRIES":    ("client.max_retries", int),
    "LMSTUDIO_DEFAULT_MODEL":  ("turn.model", str),
    "LMTURN_STREAMING":        ("turn.streaming", bool),
    "LMTURN_TURN_TIMEOUT":     ("turn.timeout_seconds", float),
    "LMTURN_MAX_ROUNDS":       ("turn.max_rounds", int),
    "LMTURN_DEFER_BY_DEFAULT": ("tools.defer_by_default", bool),
    "LMTURN_DEFERRED_TOOLS":   ("tools.deferred", list),
    "LMTURN_MAX_WORKERS":      ("tools.max_workers", int),
    "LMTURN_PLUGINS":          ("tools.plugins", bool),
}


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: dict[str, Any] | None = None,
    environ: dict[str, str] | None = None,
) -> LMTurnConfig:
    """
    Build an LMTurnConfig by layering sources in precedence order:

        defaults  <  config file  <  env vars  <  CLI flags

    Parameters
    ----------
    config_path : path to YAML config file (optional)
    cli_overrides : dict of dotpath -> value CLI flag overrides
    environ : mapping used instead of ``os.environ`` (tests)
    """
    raw: dict[str, Any] = {}

    # --- 1. Config file ---
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.is_file():
            with p.open("r", encoding="utf-8") as f:
                try:
                    file_data = yaml.safe_load(f) or {}
                except yaml.YAMLError as e:
                    raise ConfigurationError(f"Invalid YAML in {p}: {e}") from e
            if not isinstance(file_data, dict):
                raise ConfigurationError(f"Config file {p} must contain a mapping")
            raw = _deep_merge(raw, file_data)

    cfg = LMTurnConfig(
        client=_build_section(ClientConfig, raw.get("client", {})),
        turn=_build_section(TurnConfig, raw.get("turn", {})),
        tools=_build_section(ToolsConfig, raw.get("tools", {})),
    )

    # --- 2. Env var overrides ---
    env = os.environ if environ is None else environ
    for env_var, (dotpath, target_type) in _ENV_MAP.items():
        val = env.get(env_var)
        if val is not None:
            _apply_dotpath(cfg, dotpath, _coerce(val, target_type))

    # --- 3. CLI flag overrides ---
    if cli_overrides:
        for dotpath, value in cli_overrides.items():
            if value is not None:
                _apply_dotpath(cfg, dotpath, value)

    return cfg
