"""
Configuration for s3backup.

Settings are resolved in layers, each one overriding the previous:

1. Built-in defaults
2. JSON configuration file (dashed keys, e.g. "bucket-name")
3. Command line flags / S3BACKUP_* environment variables

The result is a single frozen BackupSettings value that the rest of the
program only reads.
"""

import os
import json
import logging
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Optional, Dict, Any, List


logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = 's3backup-config.json'


class ConfigError(Exception):
    """Raised when configuration cannot be loaded."""
    pass


@dataclass(frozen=True)
class BackupSettings:
    """Immutable snapshot of everything a backup run needs."""

    # Object store
    endpoint: str = ''
    access_key_id: str = ''
    secret_access_key: str = ''
    bucket_name: str = ''
    use_ssl: bool = True
    location: str = 'us-east-1'

    # Backup
    max_backups: int = 5
    backup_prefix: str = 'backup-'
    backup_folder: str = ''
    archive_format: str = 'zip'
    temp_dir: Optional[str] = None

    # Mail relay
    smtp_hostname: str = ''
    smtp_port: int = 25
    smtp_username: str = ''
    smtp_password: str = ''
    smtp_from_email: str = ''
    smtp_verify_tls: bool = False

    # Notifications
    notify_success: bool = False
    notify_error: bool = False
    notify_email: str = ''

    def __repr__(self):
        return f'<BackupSettings bucket={self.bucket_name} folder={self.backup_folder}>'


# Dashed config/flag names mapped to BackupSettings attributes
OPTION_NAMES = {
    'endpoint': 'endpoint',
    'access-key-id': 'access_key_id',
    'secret-access-key': 'secret_access_key',
    'bucket-name': 'bucket_name',
    'ssl': 'use_ssl',
    'location': 'location',
    'max-backups': 'max_backups',
    'backup-prefix': 'backup_prefix',
    'backup-folder': 'backup_folder',
    'archive-format': 'archive_format',
    'temp-dir': 'temp_dir',
    'smtp-hostname': 'smtp_hostname',
    'smtp-port': 'smtp_port',
    'smtp-username': 'smtp_username',
    'smtp-password': 'smtp_password',
    'smtp-from-email': 'smtp_from_email',
    'smtp-verify-tls': 'smtp_verify_tls',
    'notify-success': 'notify_success',
    'notify-error': 'notify_error',
    'notify-email': 'notify_email',
}

_FIELD_TYPES = {f.name: f.type for f in fields(BackupSettings)}


def default_config_paths() -> List[Path]:
    """
    Paths searched for a configuration file when none is given explicitly.

    The home directory has priority over the current directory.
    """
    return [
        Path.home() / f'.{CONFIG_FILE_NAME}',
        Path.cwd() / CONFIG_FILE_NAME,
    ]


def find_config_file(explicit_path: Optional[str] = None) -> Optional[Path]:
    """
    Locate the configuration file to load.

    Args:
        explicit_path: Path given on the command line, if any

    Returns:
        Path of the file to load, or None if there is nothing to load

    Raises:
        ConfigError: If an explicit path was given but does not exist
    """
    if explicit_path:
        path = Path(explicit_path).expanduser()
        if not path.is_file():
            raise ConfigError(f"Configuration file not found: {path}")
        return path

    for path in default_config_paths():
        if path.is_file():
            return path

    return None


def load_config_file(path: Path) -> Dict[str, Any]:
    """
    Read a JSON configuration file into settings attribute overrides.

    Args:
        path: Path to the JSON file

    Returns:
        Dict keyed by BackupSettings attribute names

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    try:
        raw = json.loads(Path(path).read_text())
    except OSError as e:
        raise ConfigError(f"Configuration file read error: {e}")
    except ValueError as e:
        raise ConfigError(f"Configuration file parse error: {e}")

    if not isinstance(raw, dict):
        raise ConfigError(f"Configuration file must contain a JSON object: {path}")

    overrides = {}
    for key, value in raw.items():
        attr = OPTION_NAMES.get(key)
        if attr is None:
            logger.warning(f"Ignoring unknown configuration key: {key}")
            continue
        overrides[attr] = value

    logger.debug(f"Loaded configuration from {path}")
    return overrides


def _check_type(attr: str, value: Any) -> Any:
    """Validate a single override against the BackupSettings field type."""
    if value is None:
        return value

    expected = _FIELD_TYPES[attr]

    if expected in (bool, 'bool'):
        if not isinstance(value, bool):
            raise ConfigError(f"Setting '{attr}' must be a boolean, got {value!r}")
    elif expected in (int, 'int'):
        # bool is an int subclass; reject it explicitly
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"Setting '{attr}' must be an integer, got {value!r}")
    elif not isinstance(value, str):
        raise ConfigError(f"Setting '{attr}' must be a string, got {value!r}")

    return value


def build_settings(*layers: Dict[str, Any]) -> BackupSettings:
    """
    Build BackupSettings from override layers.

    Each layer is a dict keyed by attribute name. Later layers win; None
    values mean "not set in this layer" and never override.

    Returns:
        Frozen BackupSettings

    Raises:
        ConfigError: If a layer holds an unknown key or a badly typed value
    """
    settings = BackupSettings()

    for layer in layers:
        changes = {}
        for attr, value in layer.items():
            if attr not in _FIELD_TYPES:
                raise ConfigError(f"Unknown setting: {attr}")
            if value is None:
                continue
            changes[attr] = _check_type(attr, value)
        if changes:
            settings = replace(settings, **changes)

    return settings


def load_settings(config_path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> BackupSettings:
    """
    Resolve settings from defaults, the configuration file and overrides.

    Args:
        config_path: Explicit configuration file path (optional)
        overrides: Flag values keyed by attribute name

    Returns:
        Frozen BackupSettings
    """
    file_layer = {}
    path = find_config_file(config_path)
    if path is not None:
        file_layer = load_config_file(path)

    settings = build_settings(file_layer, overrides or {})

    if settings.temp_dir:
        settings = replace(settings, temp_dir=os.path.expanduser(settings.temp_dir))

    return settings
