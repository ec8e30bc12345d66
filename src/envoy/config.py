"""Configuration loading for the CLI and the API server.

The YAML file is read, a few values may be overridden from the environment,
and the result is validated by the pydantic schema in config_schema. A single
process-wide ConfigHolder keeps the validated config and refreshes it when the
file's mtime moves forward.

Usage:
    from envoy.config import get_config, reload_config_if_changed

    config = get_config()

    if reload_config_if_changed():
        config = get_config()
"""

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from envoy.config_schema import CURRENT_SCHEMA_VERSION, AppConfig
from envoy.core.errors import ConfigLoadError, ConfigValidationError
from envoy.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("config/config.yaml")
CONFIG_PATH_ENV = "ENVOY_CONFIG_PATH"

# Environment variables that replace a single config value: env name -> dotted path
ENV_OVERRIDES: dict[str, str] = {
    "ENVOY_GATEWAY_URL": "gateway.base_url",
    "ENVOY_DB_PATH": "database.path",
    "ENVOY_DEFAULT_TIER": "autonomy.default_tier",
}

_ERROR_HINTS = {
    "missing": "is required",
    "int_type": "must be an integer",
    "int_parsing": "must be an integer",
    "bool_type": "must be true or false",
    "bool_parsing": "must be true or false",
    "literal_error": None,
}


def config_path_from_env() -> Path:
    """Return ENVOY_CONFIG_PATH if set, else config/config.yaml."""
    return Path(os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)


def describe_validation_error(error: ValidationError) -> str:
    """One line per failing field, naming the dotted field path."""
    lines = []
    for item in error.errors():
        where = ".".join(str(part) for part in item["loc"]) or "<root>"
        hint = _ERROR_HINTS.get(item["type"]) or item["msg"]
        lines.append(f"  - {where}: {hint}")
    return "\n".join(lines)


def read_config_file(path: Path) -> dict[str, Any]:
    """Parse the YAML file into a mapping; an empty file is an empty mapping.

    Raises:
        ConfigLoadError: If the file is missing, unparsable or not a mapping
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigLoadError(
            f"Configuration file not found: {path}\n"
            f"Copy config/config.yaml.example to {path} and edit it"
        ) from e
    except OSError as e:
        raise ConfigLoadError(f"Cannot read {path}: {e}") from e

    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Failed to parse YAML in {path}:\n{e}") from e

    if raw is None:
        return {}
    if isinstance(raw, dict):
        return raw
    raise ConfigLoadError(
        f"{path} must contain a YAML mapping at the top level, not {type(raw).__name__}"
    )


def apply_env_overrides(
    raw: dict[str, Any], environ: dict[str, str] | None = None
) -> dict[str, Any]:
    """Return a copy of raw with ENV_OVERRIDES values set from the environment."""
    env = os.environ if environ is None else environ
    merged = dict(raw)
    for env_name, dotted in ENV_OVERRIDES.items():
        value = env.get(env_name)
        if not value:
            continue
        section_name, key = dotted.split(".", 1)
        section = merged.get(section_name)
        section = dict(section) if isinstance(section, dict) else {}
        section[key] = value
        merged[section_name] = section
        logger.debug("config_env_override", variable=env_name, field=dotted)
    return merged


def build_config(raw: dict[str, Any], source: Path) -> AppConfig:
    """Validate a raw mapping into an AppConfig.

    Raises:
        ConfigValidationError: If a field is invalid or schema_version is too new
    """
    try:
        config = AppConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigValidationError(
            f"Invalid configuration in {source}:\n{describe_validation_error(e)}"
        ) from e

    if config.schema_version > CURRENT_SCHEMA_VERSION:
        raise ConfigValidationError(
            f"{source} declares schema_version {config.schema_version}, which is newer "
            f"than this release understands ({CURRENT_SCHEMA_VERSION})"
        )
    return config


def load_config(path: Path | None = None) -> AppConfig:
    """Read, override and validate a config file. Does not touch the singleton.

    Raises:
        ConfigLoadError: If the file cannot be read
        ConfigValidationError: If validation fails
    """
    source = path or config_path_from_env()
    config = build_config(apply_env_overrides(read_config_file(source)), source)
    logger.info(
        "config_loaded",
        path=str(source),
        schema_version=config.schema_version,
        default_tier=config.autonomy.default_tier,
    )
    return config


@dataclass
class ConfigHolder:
    """Process-wide config plus the file state needed for hot reload."""

    config: AppConfig | None = None
    path: Path | None = None
    mtime: float = 0.0
    lock: threading.Lock = field(default_factory=threading.Lock)

    def get(self) -> AppConfig:
        with self.lock:
            if self.config is None:
                path = config_path_from_env()
                self.config = load_config(path)
                self.path = path
                self.mtime = path.stat().st_mtime
            return self.config

    def reload_if_changed(self) -> bool:
        with self.lock:
            if self.path is None:
                return False
            try:
                mtime = self.path.stat().st_mtime
            except OSError as e:
                logger.warning("config_stat_failed", path=str(self.path), error=str(e))
                return False
            if mtime <= self.mtime:
                return False

            # Remember the new mtime either way so a broken edit is reported once
            self.mtime = mtime
            try:
                self.config = load_config(self.path)
            except (ConfigLoadError, ConfigValidationError) as e:
                logger.warning("config_reload_failed", path=str(self.path), error=str(e))
                return False
            logger.info("config_reloaded", path=str(self.path))
            return True

    def clear(self) -> None:
        with self.lock:
            self.config = None
            self.path = None
            self.mtime = 0.0


_holder = ConfigHolder()


def get_config() -> AppConfig:
    """Return the shared config, loading it on first use."""
    return _holder.get()


def reload_config_if_changed() -> bool:
    """Reload the shared config if its file changed since the last load.

    An invalid edit keeps the previous config in place.

    Returns:
        True only when a new config was loaded
    """
    return _holder.reload_if_changed()


def reset_config() -> None:
    """Forget the shared config. Used by tests."""
    _holder.clear()


def validate_config_file(path: Path | None = None) -> tuple[bool, str]:
    """Check a config file for the validate-config command.

    Returns:
        (is_valid, message) where message is a short summary or the error
    """
    try:
        config = load_config(path)
    except ConfigLoadError as e:
        return False, f"Load error: {e}"
    except ConfigValidationError as e:
        return False, f"Validation error: {e}"

    overrides = sorted(config.autonomy.domain_overrides.items())
    summary = [
        f"Configuration valid (schema version {config.schema_version})",
        f"  - default tier: {config.autonomy.default_tier}",
        "  - domain overrides: "
        + (", ".join(f"{domain}={tier}" for domain, tier in overrides) or "none"),
        f"  - approval threshold: {config.approval.default_threshold}",
        f"  - gateway: {config.gateway.base_url}",
        f"  - database: {config.database.path}",
    ]
    return True, "\n".join(summary)
