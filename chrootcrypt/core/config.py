# core/config.py - Configuration loading, merging, and validation
"""
SINGLE SOURCE OF TRUTH for configuration handling.

This module provides:
- Built-in defaults (default_config)
- Deep merge of the user's config.json over the defaults
- Validation into a typed Settings object
- Atomic config file writes (temp file + rename)

The config file is optional. A missing file at the default location means
built-in defaults; a missing file that was named explicitly is an error.
"""

import copy
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from chrootcrypt.core.constants import ConfigKeys, Defaults
from chrootcrypt.core.errors import ConfigError
from chrootcrypt.core.limits import Limits

_config_logger = logging.getLogger("chrootcrypt.config")


# =============================================================================
# Defaults and merging
# =============================================================================


def default_config() -> Dict[str, Any]:
    """Fresh copy of the built-in configuration."""
    return {
        ConfigKeys.SCHEMA_VERSION: Defaults.SCHEMA_VERSION,
        ConfigKeys.CHROOTS_DIR: Defaults.CHROOTS_DIR,
        ConfigKeys.SECURE_ROOT: Defaults.SECURE_ROOT,
        ConfigKeys.MOUNT_TABLE: Defaults.MOUNT_TABLE,
        ConfigKeys.SHADOW_FILE: Defaults.SHADOW_FILE,
        ConfigKeys.PASSWORD_USER: Defaults.PASSWORD_USER,
        ConfigKeys.PASSWORD_SETUP_COMMAND: list(Defaults.PASSWORD_SETUP_COMMAND),
        ConfigKeys.LOG_FILE: Defaults.LOG_FILE,
        ConfigKeys.ECRYPTFS: {
            ConfigKeys.CIPHER: Defaults.CIPHER,
            ConfigKeys.KEY_BYTES: Defaults.KEY_BYTES,
            ConfigKeys.PIPE_PASSPHRASE_MIN_VERSION: Limits.DEFAULT_PIPE_PASSPHRASE_MIN_VERSION,
            ConfigKeys.VERSION_COMMAND: list(Defaults.VERSION_COMMAND),
        },
    }


def _deep_merge(base: dict, overlay: dict) -> None:
    """Deep merge overlay into base, preserving unknown keys."""
    for key, value in overlay.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def default_config_path() -> Tuple[Path, bool]:
    """
    Config path to use when none is given on the command line.

    Returns:
        (path, explicit) - explicit is True when it came from the
        environment, which makes a missing file an error.
    """
    env_path = os.environ.get(Defaults.CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path), True
    return Path(Defaults.CONFIG_FILE), False


# =============================================================================
# Typed settings
# =============================================================================


@dataclass(frozen=True)
class Settings:
    """Validated, typed view of the configuration."""

    chroots_dir: Path
    secure_root: Path
    mount_table: Path
    shadow_file: Path
    password_user: str
    password_setup_command: List[str]
    log_file: Optional[Path]
    cipher: str
    key_bytes: int
    pipe_passphrase_min_version: int
    version_command: List[str]


def _require_command(value: Any, key: str) -> List[str]:
    if not isinstance(value, list) or not value or not all(isinstance(v, str) and v for v in value):
        raise ConfigError(f"Config key '{key}' must be a non-empty list of strings")
    return list(value)


def _require_str(value: Any, key: str) -> str:
    if not isinstance(value, str) or not value:
        raise ConfigError(f"Config key '{key}' must be a non-empty string")
    return value


def validate_config(config: Dict[str, Any]) -> Settings:
    """
    Validate a merged config dict.

    Raises:
        ConfigError: naming the first offending key
    """
    ecryptfs = config.get(ConfigKeys.ECRYPTFS)
    if not isinstance(ecryptfs, dict):
        raise ConfigError(f"Config key '{ConfigKeys.ECRYPTFS}' must be an object")

    key_bytes = ecryptfs.get(ConfigKeys.KEY_BYTES)
    if isinstance(key_bytes, bool) or key_bytes not in Limits.VALID_KEY_BYTES:
        raise ConfigError(
            f"Config key '{ConfigKeys.ECRYPTFS}.{ConfigKeys.KEY_BYTES}' must be one of "
            f"{', '.join(str(k) for k in Limits.VALID_KEY_BYTES)}"
        )

    min_version = ecryptfs.get(ConfigKeys.PIPE_PASSPHRASE_MIN_VERSION)
    if isinstance(min_version, bool) or not isinstance(min_version, int) or min_version < 0:
        raise ConfigError(
            f"Config key '{ConfigKeys.ECRYPTFS}.{ConfigKeys.PIPE_PASSPHRASE_MIN_VERSION}' "
            f"must be a non-negative integer"
        )

    log_file = config.get(ConfigKeys.LOG_FILE)
    if log_file is not None and not isinstance(log_file, str):
        raise ConfigError(f"Config key '{ConfigKeys.LOG_FILE}' must be a string or null")

    return Settings(
        chroots_dir=Path(_require_str(config.get(ConfigKeys.CHROOTS_DIR), ConfigKeys.CHROOTS_DIR)),
        secure_root=Path(_require_str(config.get(ConfigKeys.SECURE_ROOT), ConfigKeys.SECURE_ROOT)),
        mount_table=Path(_require_str(config.get(ConfigKeys.MOUNT_TABLE), ConfigKeys.MOUNT_TABLE)),
        shadow_file=Path(_require_str(config.get(ConfigKeys.SHADOW_FILE), ConfigKeys.SHADOW_FILE)),
        password_user=_require_str(config.get(ConfigKeys.PASSWORD_USER), ConfigKeys.PASSWORD_USER),
        password_setup_command=_require_command(
            config.get(ConfigKeys.PASSWORD_SETUP_COMMAND), ConfigKeys.PASSWORD_SETUP_COMMAND
        ),
        log_file=Path(log_file) if log_file else None,
        cipher=_require_str(ecryptfs.get(ConfigKeys.CIPHER), f"{ConfigKeys.ECRYPTFS}.{ConfigKeys.CIPHER}"),
        key_bytes=key_bytes,
        pipe_passphrase_min_version=min_version,
        version_command=_require_command(
            ecryptfs.get(ConfigKeys.VERSION_COMMAND), f"{ConfigKeys.ECRYPTFS}.{ConfigKeys.VERSION_COMMAND}"
        ),
    )


# =============================================================================
# Loading and writing
# =============================================================================


def load_config(config_path: Optional[Path] = None, explicit: bool = False) -> Dict[str, Any]:
    """
    Load config.json merged over the defaults.

    Args:
        config_path: File to read (default: default_config_path())
        explicit: The path was named by the user; a missing file is an error

    Returns:
        Merged configuration dictionary

    Raises:
        ConfigError: unreadable file, invalid JSON, or non-object top level
    """
    if config_path is None:
        config_path, explicit = default_config_path()
    config_path = Path(config_path)

    config = default_config()

    if not config_path.exists():
        if explicit:
            raise ConfigError(f"Config file not found: {config_path}")
        _config_logger.debug(f"config.load: path={config_path}, exists=False, using=defaults")
        return config

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            user_config = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {config_path}: {e}")
    except OSError as e:
        raise ConfigError(f"Cannot read {config_path}: {e}")

    if not isinstance(user_config, dict):
        raise ConfigError(f"Config file {config_path} must contain a JSON object")

    _deep_merge(config, copy.deepcopy(user_config))
    _config_logger.info(f"config.load: path={config_path}, keys={sorted(user_config)}")
    return config


def write_config_atomic(config_path: Path, config: Dict[str, Any]) -> None:
    """
    Write configuration to file atomically.

    Uses write-to-temp + rename strategy to prevent partial writes.

    Args:
        config_path: Path to the config file
        config: Configuration dictionary to write

    Raises:
        OSError: If write fails
        TypeError: If config is not JSON serializable
    """
    config_path = Path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    temp_path = None
    try:
        # Temp file in the same directory keeps the rename on one filesystem
        temp_fd, temp_path_str = tempfile.mkstemp(suffix=".tmp", prefix="config_", dir=str(config_path.parent))
        os.close(temp_fd)
        temp_path = Path(temp_path_str)

        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=2, ensure_ascii=False)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())

        os.chmod(temp_path, 0o644)
        temp_path.rename(config_path)
        temp_path = None

        _config_logger.info(f"config.write: path={config_path}")
    finally:
        if temp_path is not None and temp_path.exists():
            try:
                temp_path.unlink()
            except OSError:
                pass
