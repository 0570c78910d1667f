"""
Configuration management and loading.

Reads gate limits and runtime settings from an optional YAML file and the
environment. Invalid values never abort: they fall back to the documented
defaults and are logged.
"""

import logging
import os
import sys
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

import yaml

from ..core.errors import ConfigInvalid

logger = logging.getLogger(__name__)

CACHE_FILENAME = "claude-usage-gate-cache.json"

DEFAULT_LIMIT = 90
DEFAULT_FALLBACK_MODEL = "sonnet"
DEFAULT_CHEAP_MODELS = ("haiku",)
DEFAULT_CACHE_TTL = 60
DEFAULT_LOCALE = "en"
SUPPORTED_LOCALES = ("en", "ko")

_DISABLED_VALUES = {"false", "0", "no", "off"}


class EnforcementMode(Enum):
    """How a downgrade decision is applied to the host."""
    TRANSPARENT = "transparent"
    BLOCK = "block"


@dataclass(frozen=True)
class GateLimits:
    """Per-window thresholds and the fallback model each one maps to."""
    five_hour_limit: int = DEFAULT_LIMIT
    seven_day_limit: int = DEFAULT_LIMIT
    fallback_5h: str = DEFAULT_FALLBACK_MODEL
    fallback_7d: str = DEFAULT_FALLBACK_MODEL
    enabled: bool = True
    also_cheap: Tuple[str, ...] = DEFAULT_CHEAP_MODELS

    @property
    def cheap_models(self) -> FrozenSet[str]:
        """Lower-cased model ids that are never gated again.

        Both fallbacks plus ``also_cheap``, so a model cheaper than the
        fallback is not rewritten up to it.
        """
        models = {self.fallback_5h, self.fallback_7d, *self.also_cheap}
        return frozenset(model.strip().lower() for model in models if model.strip())


@dataclass(frozen=True)
class GateSettings:
    """Complete process-wide configuration."""
    limits: GateLimits
    cache_dir: Path
    cache_ttl: int = DEFAULT_CACHE_TTL
    mode: EnforcementMode = EnforcementMode.TRANSPARENT
    locale: str = DEFAULT_LOCALE
    chain_command: Optional[str] = None
    log_file: Optional[str] = None
    log_level: str = "WARNING"

    @property
    def cache_file(self) -> Path:
        return self.cache_dir / CACHE_FILENAME


def default_cache_dir() -> Path:
    """Platform-appropriate cache directory."""
    if sys.platform == "win32":
        return Path(tempfile.gettempdir()) / "claude-usage-gate"
    return Path("/tmp")


def load_settings(environ: Optional[Mapping[str, str]] = None) -> GateSettings:
    """Load settings from defaults, an optional YAML file, then the environment.

    Args:
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        GateSettings with every invalid value replaced by its default
    """
    env = os.environ if environ is None else environ

    file_values: Dict[str, Any] = {}
    config_path = env.get("CLAUDE_USAGE_GATE_CONFIG")
    if config_path:
        try:
            file_values = _load_config_file(config_path)
        except ConfigInvalid as e:
            logger.warning("Ignoring config file %s: %s", config_path, e)

    limit_5h = _pick_int(env, "CLAUDE_OPUS_LIMIT_5H", file_values.get("limits.five_hour"), DEFAULT_LIMIT)
    limit_7d = _pick_int(env, "CLAUDE_OPUS_LIMIT_7D", file_values.get("limits.seven_day"), DEFAULT_LIMIT)
    ttl = _pick_int(env, "CLAUDE_USAGE_CACHE_TTL", file_values.get("cache.ttl"), DEFAULT_CACHE_TTL)

    fallback_5h = _pick_str(env, "CLAUDE_FALLBACK_MODEL_5H", file_values.get("fallback.five_hour"))
    fallback_7d = _pick_str(env, "CLAUDE_FALLBACK_MODEL_7D", file_values.get("fallback.seven_day"))
    also_cheap = _parse_model_list(env.get("CLAUDE_USAGE_GATE_CHEAP_MODELS") or file_values.get("fallback.also_cheap"))

    enabled_raw = _pick_str(env, "CLAUDE_USAGE_GATE_ENABLED", file_values.get("enabled"))
    enabled = enabled_raw is None or enabled_raw.strip().lower() not in _DISABLED_VALUES

    cache_dir_raw = _pick_str(env, "CLAUDE_USAGE_CACHE_DIR", file_values.get("cache.dir"))
    cache_dir = Path(cache_dir_raw).expanduser() if cache_dir_raw else default_cache_dir()

    mode = _parse_mode(_pick_str(env, "CLAUDE_USAGE_GATE_MODE", file_values.get("mode")))
    locale = _parse_locale(_pick_str(env, "CLAUDE_USAGE_GATE_LOCALE", file_values.get("locale")))

    limits = GateLimits(
        five_hour_limit=limit_5h,
        seven_day_limit=limit_7d,
        fallback_5h=fallback_5h or DEFAULT_FALLBACK_MODEL,
        fallback_7d=fallback_7d or DEFAULT_FALLBACK_MODEL,
        enabled=enabled,
        also_cheap=DEFAULT_CHEAP_MODELS if also_cheap is None else also_cheap,
    )

    return GateSettings(
        limits=limits,
        cache_dir=cache_dir,
        cache_ttl=ttl,
        mode=mode,
        locale=locale,
        chain_command=_pick_str(env, "USAGE_GATE_CHAIN_CMD", file_values.get("chain_command")),
        log_file=env.get("CLAUDE_USAGE_GATE_LOG_FILE") or None,
        log_level=(env.get("CLAUDE_USAGE_GATE_LOG_LEVEL") or "WARNING").upper(),
    )


def _load_config_file(path: str) -> Dict[str, Any]:
    """Load a YAML config file into a flat ``section.key`` mapping.

    Raises:
        ConfigInvalid: If the file is unreadable, not YAML, or has unknown keys
    """
    config_path = Path(path).expanduser()
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            raw_config = yaml.safe_load(f)
    except OSError as e:
        raise ConfigInvalid(f"cannot read config file: {e}")
    except yaml.YAMLError as e:
        raise ConfigInvalid(f"invalid YAML: {e}")

    if raw_config is None:
        return {}
    if not isinstance(raw_config, dict):
        raise ConfigInvalid("config file must contain a mapping")

    sections = {
        'limits': {'five_hour', 'seven_day'},
        'fallback': {'five_hour', 'seven_day', 'also_cheap'},
        'cache': {'dir', 'ttl'},
    }
    scalars = {'enabled', 'mode', 'locale', 'chain_command'}

    unknown_keys = set(raw_config.keys()) - set(sections) - scalars
    if unknown_keys:
        raise ConfigInvalid(f"unknown configuration keys: {unknown_keys}")

    flat: Dict[str, Any] = {}
    for section, allowed in sections.items():
        data = raw_config.get(section)
        if data is None:
            continue
        if not isinstance(data, dict):
            raise ConfigInvalid(f"'{section}' must be a dictionary")
        unknown = set(data.keys()) - allowed
        if unknown:
            raise ConfigInvalid(f"unknown keys in {section}: {unknown}")
        for key, value in data.items():
            flat[f"{section}.{key}"] = value

    for key in scalars:
        if key in raw_config and raw_config[key] is not None:
            flat[key] = raw_config[key]
    return flat


def _parse_int(value: Any) -> int:
    """Parse a non-negative integer.

    Raises:
        ConfigInvalid: If the value is not a non-negative integer
    """
    if isinstance(value, bool):
        raise ConfigInvalid(f"not an integer: {value!r}")
    try:
        parsed = int(str(value).strip())
    except ValueError:
        raise ConfigInvalid(f"not an integer: {value!r}")
    if parsed < 0:
        raise ConfigInvalid(f"must be >= 0: {parsed}")
    return parsed


def _pick_int(env: Mapping[str, str], name: str, file_value: Any, default: int) -> int:
    for source, value in ((name, env.get(name)), (f"config file ({name})", file_value)):
        if value is None or value == "":
            continue
        try:
            return _parse_int(value)
        except ConfigInvalid as e:
            logger.warning("Invalid %s, using default %s: %s", source, default, e)
            return default
    return default


def _pick_str(env: Mapping[str, str], name: str, file_value: Any) -> Optional[str]:
    value = env.get(name)
    if value:
        return value
    if file_value is None:
        return None
    if isinstance(file_value, bool):
        return "true" if file_value else "false"
    return str(file_value) or None


def _parse_mode(value: Optional[str]) -> EnforcementMode:
    if not value:
        return EnforcementMode.TRANSPARENT
    try:
        return EnforcementMode(value.strip().lower())
    except ValueError:
        valid_modes = [mode.value for mode in EnforcementMode]
        logger.warning("Unknown enforcement mode %r (expected one of %s), using transparent", value, valid_modes)
        return EnforcementMode.TRANSPARENT


def _parse_locale(value: Optional[str]) -> str:
    if not value:
        return DEFAULT_LOCALE
    locale = value.strip().lower()
    if locale not in SUPPORTED_LOCALES:
        logger.warning("Unsupported locale %r, using %s", value, DEFAULT_LOCALE)
        return DEFAULT_LOCALE
    return locale


def _parse_model_list(value: Any) -> Optional[Tuple[str, ...]]:
    """Parse a comma-separated string or YAML list of model ids.

    Returns None when unset or unusable, so the caller keeps its default.
    """
    if value is None:
        return None
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        logger.warning("Invalid cheap model list %r, using default", value)
        return None
    return tuple(str(item).strip() for item in items if item is not None and str(item).strip())
