"""Covenant configuration management.

Loads configuration from .covenant/config.yaml with sensible defaults.
All settings can be overridden via environment variables (COVENANT_*).

Config locations (in priority order):
1. Explicit path passed to load_config()
2. .covenant/config.yaml (project-local)
3. ~/.covenant/config.yaml (user-global)
4. Built-in defaults

Thread Safety:
    Uses threading.Lock for thread-safe lazy initialization.
"""

from __future__ import annotations

import copy
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from covenant.foundation.errors import config_error

DOCSTRING_STYLES = ("sphinx", "google", "numpy", "tag")


@dataclass
class AnalysisConfig:
    """Configuration for the conformance engine."""

    max_call_depth: int = 32
    """Ceiling on nested call following while resolving raised exceptions."""

    follow_calls: bool = True
    """Follow self/class/local calls; when False only the method body is read."""

    docstring_styles: tuple[str, ...] = DOCSTRING_STYLES
    """Docstring conventions recognized when extracting declared exceptions."""

    skip_methods: tuple[str, ...] = ("__init__", "__new__", "__init_subclass__", "__post_init__")
    """Methods never compared against their contracts."""


@dataclass
class ScanConfig:
    """Configuration for building the symbol table."""

    exclude: tuple[str, ...] = (
        "__pycache__",
        ".git",
        ".venv",
        "venv",
        "node_modules",
        ".pytest_cache",
        ".tox",
    )
    """Path fragments skipped while walking directories."""


@dataclass
class CovenantConfig:
    """Root configuration for Covenant."""

    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)

    verbose: bool = False
    """Enable debug logging by default."""


# Global config instance (lazy-loaded, thread-safe)
_config: CovenantConfig | None = None
_config_lock = threading.Lock()

_DEFAULTS: dict[str, Any] = {
    "analysis": {
        "max_call_depth": 32,
        "follow_calls": True,
        "docstring_styles": list(DOCSTRING_STYLES),
        "skip_methods": ["__init__", "__new__", "__init_subclass__", "__post_init__"],
    },
    "scan": {
        "exclude": list(ScanConfig().exclude),
    },
    "verbose": False,
}


def _deep_update(base: dict, updates: dict) -> dict:
    """Recursively update a dict with another dict."""
    for key, value in updates.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_update(base[key], value)
        else:
            base[key] = value
    return base


def _coerce_env_value(value: str, default: Any) -> Any:
    """Coerce an env string to the type of the default it replaces."""
    if isinstance(default, bool):
        return value.lower() in ("true", "1", "yes")
    if isinstance(default, int):
        return int(value)
    if isinstance(default, list):
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


def _apply_env_overrides(config_dict: dict, environ: dict[str, str] | None = None) -> dict:
    """Apply environment variable overrides.

    Environment variables follow pattern: COVENANT_SECTION_KEY

    Examples:
        COVENANT_ANALYSIS_MAX_CALL_DEPTH=8
        COVENANT_ANALYSIS_FOLLOW_CALLS=false
        COVENANT_SCAN_EXCLUDE=build,dist
        COVENANT_VERBOSE=true
    """
    prefix = "COVENANT_"
    environ = os.environ if environ is None else environ

    for key, value in environ.items():
        if not key.startswith(prefix):
            continue
        path_str = key[len(prefix):].lower()

        if path_str in config_dict and not isinstance(config_dict[path_str], dict):
            target, final_key = config_dict, path_str
        else:
            section, _, final_key = path_str.partition("_")
            target = config_dict.get(section)
            if not isinstance(target, dict) or final_key not in target:
                continue  # Unknown key (e.g. COVENANT_LOG_LEVEL belongs to logging)

        try:
            target[final_key] = _coerce_env_value(value, target[final_key])
        except ValueError as e:
            raise config_error(key, f"cannot use {value!r}", cause=e) from e

    return config_dict


def _checked(key: str, value: Any, default: Any) -> Any:
    """Validate a loaded value against the type of its default."""
    if isinstance(default, bool):
        if not isinstance(value, bool):
            raise config_error(key, f"expected true or false, got {value!r}")
        return value
    if isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, int):
            raise config_error(key, f"expected an integer, got {value!r}")
        return value
    if isinstance(default, list):
        if not isinstance(value, list | tuple) or not all(isinstance(v, str) for v in value):
            raise config_error(key, f"expected a list of strings, got {value!r}")
        return tuple(value)
    return value


def _section(data: dict, name: str) -> dict[str, Any]:
    section = data.get(name)
    if not isinstance(section, dict):
        raise config_error(name, f"expected a mapping, got {section!r}")
    defaults = _DEFAULTS[name]
    unknown = sorted(set(section) - set(defaults))
    if unknown:
        raise config_error(name, f"unknown keys {unknown}; expected any of {list(defaults)}")
    return {key: _checked(f"{name}.{key}", value, defaults[key]) for key, value in section.items()}


def _dict_to_config(data: dict) -> CovenantConfig:
    """Convert a dict to CovenantConfig."""
    analysis = AnalysisConfig(**_section(data, "analysis"))
    scan = ScanConfig(**_section(data, "scan"))

    unknown = set(analysis.docstring_styles) - set(DOCSTRING_STYLES)
    if unknown:
        raise config_error(
            "analysis.docstring_styles",
            f"unknown styles {sorted(unknown)}; expected any of {list(DOCSTRING_STYLES)}",
        )
    if analysis.max_call_depth < 1:
        raise config_error("analysis.max_call_depth", "must be at least 1")

    return CovenantConfig(
        analysis=analysis,
        scan=scan,
        verbose=_checked("verbose", data.get("verbose", False), _DEFAULTS["verbose"]),
    )


def load_config(path: str | Path | None = None) -> CovenantConfig:
    """Load configuration from file with defaults and env overrides.

    Priority (highest to lowest):
    1. Environment variables (COVENANT_*)
    2. Explicit path if provided
    3. .covenant/config.yaml (project-local)
    4. ~/.covenant/config.yaml (user-global)
    5. Built-in defaults

    Args:
        path: Optional explicit config file path.

    Returns:
        Merged CovenantConfig instance.

    Raises:
        CovenantError: If a config file or override holds an invalid value.
    """
    global _config

    config_dict = copy.deepcopy(_DEFAULTS)

    config_paths = []
    if path:
        config_paths.append(Path(path))
    config_paths.extend([
        Path(".covenant/config.yaml"),
        Path.home() / ".covenant" / "config.yaml",
    ])

    for config_path in config_paths:
        if config_path.exists():
            try:
                with open(config_path, encoding="utf-8") as f:
                    file_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise config_error(str(config_path), "not valid YAML", cause=e) from e
            if not isinstance(file_config, dict):
                raise config_error(str(config_path), "top level must be a mapping")
            _deep_update(config_dict, file_config)
            break  # Use first found config

    config_dict = _apply_env_overrides(config_dict)

    with _config_lock:
        _config = _dict_to_config(config_dict)
        return _config


def get_config() -> CovenantConfig:
    """Get the current configuration, loading if needed."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:
                _config = _dict_to_config(_apply_env_overrides(copy.deepcopy(_DEFAULTS)))
    return _config


def reset_config() -> None:
    """Reset the global config (for testing)."""
    global _config
    with _config_lock:
        _config = None
