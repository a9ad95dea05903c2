"""
Configuration loading and management for AD Group Sync.

This module handles loading configuration from a YAML (or JSON) file and
environment variables, with validation and defaults. The result is an
immutable Configuration that is passed explicitly to every component.
"""

import os
import yaml
import logging
from dataclasses import dataclass
from typing import Dict, Any, List, Optional

from ldap3.utils.dn import escape_rdn

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


@dataclass(frozen=True)
class DirectoryConfig:
    """Connection and search settings for the Active Directory server."""
    host: str
    domain: str
    username: str
    password: str
    userdn: str
    groupdn: str
    group: str
    port: int = 389

    @property
    def server_url(self) -> str:
        return f"ldap://{self.host}:{self.port}"

    @property
    def bind_user(self) -> str:
        """Down-level logon name used for the bind, DOMAIN\\username."""
        return f"{self.domain}\\{self.username}"

    @property
    def group_dn(self) -> str:
        return f"cn={escape_rdn(self.group)},{self.groupdn}"


@dataclass(frozen=True)
class LoggingConfig:
    enabled: bool = False
    location: str = '.'
    level: str = 'INFO'
    console: bool = False


@dataclass(frozen=True)
class Configuration:
    activedirectory: DirectoryConfig
    logging: LoggingConfig


def _lowercase_keys(value: Any) -> Any:
    """Recursively lowercase the keys of every mapping in a parsed document."""
    if isinstance(value, dict):
        return {str(key).lower(): _lowercase_keys(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_lowercase_keys(item) for item in value]
    return value


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Environment variable mappings for sensitive fields
    ENV_OVERRIDES = {
        'activedirectory.password': 'ADSYNC_PASSWORD',
    }

    REQUIRED_DIRECTORY_FIELDS = [
        'domain', 'username', 'password', 'userdn', 'groupdn', 'group'
    ]

    DIRECTORY_DEFAULTS = {
        'host': '127.0.0.1',
        'port': 389,
    }

    LOGGING_DEFAULTS = {
        'enabled': False,
        'location': '.',
        'level': 'INFO',
        'console': False,
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize config loader.

        Args:
            config_path: Path to config file. If None, uses ADSYNC_CONFIG env var or 'config.yaml'
        """
        self.config_path = config_path or os.getenv('ADSYNC_CONFIG', 'config.yaml')
        self.config = {}

    def load(self) -> Configuration:
        """
        Load configuration from file and apply environment overrides.

        Returns:
            Validated, immutable Configuration

        Raises:
            ConfigurationError: If config file not found, unreadable or validation fails
        """
        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        except OSError as e:
            raise ConfigurationError(f"Unable to read config file {self.config_path}: {e}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Config file is corrupt: {e}")

        if self.config is None:
            self.config = {}
        if not isinstance(self.config, dict):
            raise ConfigurationError(f"Config file is corrupt: expected a mapping in {self.config_path}")

        # key lookup ignores case, so UserDN and userdn name the same field
        self.config = _lowercase_keys(self.config)
        self._apply_defaults()
        self._apply_env_overrides()
        self._validate()

        logger.debug(f"Configuration loaded successfully from {self.config_path}")
        return self._build()

    def _apply_env_overrides(self):
        """Apply environment variable overrides for sensitive fields."""
        for config_key, env_var in self.ENV_OVERRIDES.items():
            env_value = os.getenv(env_var)
            if env_value:
                self._set_nested_value(self.config, config_key, env_value)
                logger.debug(f"Applied environment override for {config_key}")

    def _set_nested_value(self, config: Dict, key_path: str, value: Any):
        """Set a nested configuration value using dot notation."""
        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def _section(self, name: str) -> Dict[str, Any]:
        section = self.config.get(name)
        if section is None:
            section = self.config[name] = {}
        if not isinstance(section, dict):
            raise ConfigurationError(f"Config file is corrupt: '{name}' must be a mapping")
        return section

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        directory = self._section('activedirectory')
        for key, value in self.DIRECTORY_DEFAULTS.items():
            directory.setdefault(key, value)

        logging_config = self._section('logging')
        for key, value in self.LOGGING_DEFAULTS.items():
            logging_config.setdefault(key, value)

    def _validate(self):
        """Validate required configuration fields."""
        errors: List[str] = []

        directory = self.config['activedirectory']
        for field in self.REQUIRED_DIRECTORY_FIELDS:
            if not directory.get(field):
                errors.append(f"Missing required activedirectory field: {field}")
        if not directory.get('host'):
            errors.append("activedirectory.host must not be empty")
        port = directory.get('port')
        if isinstance(port, bool) or not isinstance(port, int):
            errors.append(f"activedirectory.port must be an integer, got {port!r}")

        logging_config = self.config['logging']
        for field in ('enabled', 'console'):
            if not isinstance(logging_config.get(field), bool):
                errors.append(f"logging.{field} must be true or false")
        if not logging_config.get('location'):
            errors.append("logging.location must not be empty")
        level = str(logging_config.get('level')).upper()
        if not isinstance(logging.getLevelName(level), int):
            errors.append(f"logging.level must be a standard level name, got {logging_config.get('level')!r}")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _build(self) -> Configuration:
        directory = self.config['activedirectory']
        logging_config = self.config['logging']
        return Configuration(
            activedirectory=DirectoryConfig(
                host=str(directory['host']),
                domain=str(directory['domain']),
                username=str(directory['username']),
                password=str(directory['password']),
                userdn=str(directory['userdn']),
                groupdn=str(directory['groupdn']),
                group=str(directory['group']),
                port=directory['port'],
            ),
            logging=LoggingConfig(
                enabled=logging_config['enabled'],
                location=str(logging_config['location']),
                level=str(logging_config['level']).upper(),
                console=logging_config['console'],
            ),
        )


def load_config(config_path: Optional[str] = None) -> Configuration:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to config file

    Returns:
        Loaded configuration
    """
    loader = ConfigLoader(config_path)
    return loader.load()
