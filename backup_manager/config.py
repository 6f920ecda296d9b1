import os
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class ConfigurationError(Exception):
    """Raised when settings are missing or malformed."""
    pass


class Config:
    """Base configuration"""

    # Settings file holding GeneralConfig / S3Config sections
    SETTINGS_FILE = os.environ.get('SETTINGS_FILE') or 'appsettings.json'

    # Output directories
    TEMP_DIR = os.environ.get('TEMP_DIR') or 'temp'
    LOG_DIR = os.environ.get('LOG_DIR') or 'logs'

    # Archive, validated by parse_compression_level() when a run starts
    COMPRESSION_LEVEL = os.environ.get('COMPRESSION_LEVEL') or 9

    # Skip remaining stages once one has failed
    STOP_ON_FAILURE = os.environ.get('STOP_ON_FAILURE', 'false').lower() == 'true'

    DEBUG = False


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    TEMP_DIR = os.path.join(DATA_DIR, 'temp')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}


def parse_compression_level(value) -> int:
    """Return value as a deflate level, raising ConfigurationError unless it is 1-9."""
    try:
        level = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"COMPRESSION_LEVEL must be an integer, got {value!r}") from e

    if not 1 <= level <= 9:
        raise ConfigurationError(f"COMPRESSION_LEVEL must be between 1 and 9, got {level}")

    return level


@dataclass
class BackupConfig:
    """What to back up and how long remote archives are kept."""

    directories: List[str] = field(default_factory=list)
    ignores: List[str] = field(default_factory=list)
    days_after_delete: Optional[int] = None


@dataclass
class StoreConfig:
    """Connection details for the S3-compatible bucket."""

    service_url: Optional[str] = None
    region_endpoint: Optional[str] = None
    access_key_id: Optional[str] = None
    access_key: Optional[str] = None
    bucket_name: Optional[str] = None

    def require(self, name: str) -> str:
        """
        Return a required field, failing when it is empty.

        Raises:
            ConfigurationError: If the field is not set
        """
        value = getattr(self, name)
        if not value:
            raise ConfigurationError(f"S3Config.{name} is not configured")
        return value


@dataclass
class Settings:
    general: BackupConfig = field(default_factory=BackupConfig)
    store: StoreConfig = field(default_factory=StoreConfig)


_GENERAL_KEYS = {
    'directories': 'directories',
    'ignores': 'ignores',
    'daysafterdelete': 'days_after_delete',
}

_STORE_KEYS = {
    'serviceurl': 'service_url',
    'regionendpoint': 'region_endpoint',
    'accesskeyid': 'access_key_id',
    'accesskey': 'access_key',
    'bucketname': 'bucket_name',
}


def _section(document: Dict[str, Any], name: str) -> Dict[str, Any]:
    """Find a section by name, ignoring case."""
    for key, value in document.items():
        if key.lower() == name.lower():
            if value is None:
                return {}
            if not isinstance(value, dict):
                raise ConfigurationError(f"Section {key} must be an object")
            return value
    return {}


def _bind(section: Dict[str, Any], key_map: Dict[str, str]) -> Dict[str, Any]:
    bound = {}
    for key, value in section.items():
        attr = key_map.get(key.replace('_', '').lower())
        if attr is not None:
            bound[attr] = value
    return bound


def parse_settings(document: Dict[str, Any]) -> Settings:
    """
    Bind a settings document to Settings.

    Unknown keys are ignored and missing keys keep their defaults, so required
    values are only reported when a stage actually needs them.

    Args:
        document: Parsed JSON object

    Returns:
        Settings instance
    """
    if not isinstance(document, dict):
        raise ConfigurationError("Settings document must be a JSON object")

    general = _bind(_section(document, 'GeneralConfig'), _GENERAL_KEYS)
    for name in ('directories', 'ignores'):
        if general.get(name) is None:
            general.pop(name, None)
        elif isinstance(general[name], str):
            general[name] = [general[name]]
        else:
            general[name] = [str(item) for item in general[name]]

    if general.get('days_after_delete') is not None:
        try:
            general['days_after_delete'] = int(general['days_after_delete'])
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"GeneralConfig.DaysAfterDelete must be an integer, got {general['days_after_delete']!r}"
            )

    store = _bind(_section(document, 'S3Config'), _STORE_KEYS)

    return Settings(general=BackupConfig(**general), store=StoreConfig(**store))


def load_settings(path: str) -> Settings:
    """
    Load settings from a JSON file.

    A missing file is not an error: defaults are bound instead.

    Args:
        path: Path to the settings file

    Returns:
        Settings instance

    Raises:
        ConfigurationError: If the file cannot be read or parsed
    """
    if not os.path.exists(path):
        return Settings()

    try:
        with open(path, 'r', encoding='utf-8') as f:
            document = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid settings file {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to read settings file {path}: {e}") from e

    return parse_settings(document)
