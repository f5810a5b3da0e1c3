"""
Configuration Management for the Vyaapar client.

This module handles client configuration including the API base URL, timeouts,
credential storage backend and logging, with support for configuration files
and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from typing import Optional, Dict, Any
from configparser import ConfigParser, Error as ConfigParserError

from vyaapar_shared.exceptions import ConfigurationError, ErrorCode

logger = logging.getLogger(__name__)

STORAGE_BACKENDS = ('auto', 'keyring', 'file', 'memory')
LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')
LOG_FORMATS = ('standard', 'detailed', 'json')


class ClientConfiguration:
    """
    Configuration manager for the Vyaapar client.

    Supports configuration from:
    1. Overrides such as command line arguments (highest priority)
    2. Environment variables
    3. Configuration file
    4. Default values (lowest priority)
    """

    def __init__(self, config_file: Optional[str] = None):
        self._config_file = config_file or self._get_default_config_path()
        self._config_data: Dict[str, Any] = {}
        self._overrides: Dict[str, Any] = {}

        self._load_configuration()

    def _get_default_config_path(self) -> str:
        """Get default configuration file path: ~/.vyaapar/client.conf"""
        return str(Path.home() / '.vyaapar' / 'client.conf')

    def _load_configuration(self) -> None:
        """Load configuration from file and environment variables."""
        if os.path.exists(self._config_file):
            self._load_from_file()
            logger.info(f"Configuration loaded from: {self._config_file}")
        else:
            logger.debug(f"Configuration file not found: {self._config_file}")

        self._load_from_environment()
        self._set_defaults()
        self.validate()

    def _load_from_file(self) -> None:
        """Load configuration from INI file."""
        config = ConfigParser()
        try:
            config.read(self._config_file)
        except ConfigParserError as e:
            raise ConfigurationError(
                f"Cannot parse configuration file {self._config_file}: {e}",
                error_code=ErrorCode.CONFIG_INVALID_FORMAT,
                cause=e
            )

        for section_name in config.sections():
            section_data = {}
            for key, value in config[section_name].items():
                # Try to parse as JSON for numbers and booleans
                try:
                    section_data[key] = json.loads(value)
                except (json.JSONDecodeError, ValueError):
                    section_data[key] = value

            self._config_data[section_name] = section_data

    def _load_from_environment(self) -> None:
        """Load configuration from environment variables."""
        env_mappings = {
            'VYAAPAR_API_URL': ('api', 'base_url'),
            'VYAAPAR_API_TIMEOUT': ('api', 'timeout'),
            'VYAAPAR_USE_MOCK': ('auth', 'use_mock'),
            'VYAAPAR_STORAGE_BACKEND': ('storage', 'backend'),
            'VYAAPAR_LOG_LEVEL': ('logging', 'level'),
            'VYAAPAR_LOG_FORMAT': ('logging', 'format'),
        }

        for env_var, (section, key) in env_mappings.items():
            value = os.environ.get(env_var)
            if value is not None:
                if section not in self._config_data:
                    self._config_data[section] = {}

                # Convert boolean strings
                if value.lower() in ('true', 'false'):
                    self._config_data[section][key] = value.lower() == 'true'
                # Convert numeric strings
                elif value.isdigit():
                    self._config_data[section][key] = int(value)
                else:
                    self._config_data[section][key] = value

    def _set_defaults(self) -> None:
        """Set default configuration values."""
        defaults = {
            'api': {
                'base_url': 'https://api.yourapp.in/v1',
                'timeout': 15.0,
                'refresh_timeout': 15.0,
                'app_version': '1.0.0',
                'platform': 'mobile'
            },
            'auth': {
                'use_mock': False,
                'mock_delay': 0.8,
                'restore_timeout': 5.0,
                'revoke_timeout': 10.0
            },
            'storage': {
                'backend': 'auto',
                'service_name': 'vyaapar-client',
                'file_path': None
            },
            'logging': {
                'level': 'INFO',
                'format': 'standard',
                'file': None,
                'audit_file': None,
                'max_size': 10485760,  # 10MB
                'backup_count': 3
            }
        }

        for section, section_defaults in defaults.items():
            if section not in self._config_data:
                self._config_data[section] = {}

            for key, default_value in section_defaults.items():
                if key not in self._config_data[section]:
                    self._config_data[section][key] = default_value

    def validate(self) -> None:
        """
        Check the loaded values.

        Raises:
            ConfigurationError: On the first invalid value
        """
        base_url = self.get_api_base_url()
        if not isinstance(base_url, str) or not base_url.startswith(('http://', 'https://')):
            raise ConfigurationError(f"Invalid API base URL: {base_url!r}", config_key='api.base_url')

        for key in ('api.timeout', 'api.refresh_timeout', 'auth.restore_timeout', 'auth.revoke_timeout'):
            self._positive_number(key)
        mock_delay = self._number('auth.mock_delay')
        if mock_delay < 0:
            raise ConfigurationError(f"auth.mock_delay must not be negative: {mock_delay}",
                                     config_key='auth.mock_delay')

        if self.get_storage_backend() not in STORAGE_BACKENDS:
            raise ConfigurationError(
                f"Unknown storage backend {self.get_storage_backend()!r}, expected one of {STORAGE_BACKENDS}",
                config_key='storage.backend'
            )
        if self.get_log_level() not in LOG_LEVELS:
            raise ConfigurationError(f"Unknown log level: {self.get_log_level()!r}", config_key='logging.level')
        if self.get_log_format() not in LOG_FORMATS:
            raise ConfigurationError(f"Unknown log format: {self.get_log_format()!r}", config_key='logging.format')

    def _number(self, key: str) -> float:
        value = self.get_config(key)
        if isinstance(value, bool):
            raise ConfigurationError(f"{key} must be a number, got {value!r}", config_key=key)
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ConfigurationError(f"{key} must be a number, got {value!r}", config_key=key)

    def _positive_number(self, key: str) -> float:
        value = self._number(key)
        if value <= 0:
            raise ConfigurationError(f"{key} must be positive, got {value}", config_key=key)
        return value

    def get_config(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key in format 'section.key'
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        if key in self._overrides:
            return self._overrides[key]

        if '.' not in key:
            return self._config_data.get(key, default)

        section, config_key = key.split('.', 1)
        return self._config_data.get(section, {}).get(config_key, default)

    def set_override(self, key: str, value: Any) -> None:
        """
        Set configuration override (highest priority).

        Args:
            key: Configuration key in format 'section.key'
            value: Override value

        Raises:
            ConfigurationError: If the value is invalid; the override is not kept
        """
        previous = self._overrides.copy()
        self._overrides[key] = value
        try:
            self.validate()
        except ConfigurationError:
            self._overrides = previous
            raise

    def get_all_config(self) -> Dict[str, Any]:
        """Get all configuration data."""
        merged = {section: dict(values) for section, values in self._config_data.items()}
        for key, value in self._overrides.items():
            if '.' in key:
                section, config_key = key.split('.', 1)
                merged.setdefault(section, {})[config_key] = value
        return merged

    def get_config_file_path(self) -> str:
        """Get configuration file path."""
        return self._config_file

    def reload_configuration(self) -> None:
        """Reload configuration from file and environment."""
        self._config_data.clear()
        self._load_configuration()
        logger.info("Configuration reloaded")

    # Convenience methods for common configuration values

    def get_api_base_url(self) -> str:
        return self.get_config('api.base_url')

    def get_api_timeout(self) -> float:
        """Get request timeout in seconds."""
        return self._positive_number('api.timeout')

    def get_refresh_timeout(self) -> float:
        """Get token refresh timeout in seconds."""
        return self._positive_number('api.refresh_timeout')

    def get_app_version(self) -> str:
        return str(self.get_config('api.app_version'))

    def get_platform(self) -> str:
        return str(self.get_config('api.platform'))

    def use_mock_gateway(self) -> bool:
        """Check if the development mock gateway should be used."""
        value = self.get_config('auth.use_mock', False)
        if isinstance(value, str):
            return value.lower() in ('1', 'true', 'yes', 'on')
        return bool(value)

    def get_mock_delay(self) -> float:
        return self._number('auth.mock_delay')

    def get_restore_timeout(self) -> float:
        return self._positive_number('auth.restore_timeout')

    def get_revoke_timeout(self) -> float:
        return self._positive_number('auth.revoke_timeout')

    def get_storage_backend(self) -> str:
        return str(self.get_config('storage.backend')).lower()

    def get_storage_service_name(self) -> str:
        return str(self.get_config('storage.service_name'))

    def get_storage_file_path(self) -> Optional[Path]:
        """Get encrypted credential file path, if configured."""
        value = self.get_config('storage.file_path')
        return Path(value).expanduser() if value else None

    def get_log_level(self) -> str:
        """Get logging level."""
        return str(self.get_config('logging.level', 'INFO')).upper()

    def get_log_format(self) -> str:
        return str(self.get_config('logging.format', 'standard')).lower()

    def get_log_file(self) -> Optional[str]:
        """Get log file path."""
        return self.get_config('logging.file')

    def get_audit_log_file(self) -> Optional[str]:
        return self.get_config('logging.audit_file')

    def get_log_max_size(self) -> int:
        return int(self.get_config('logging.max_size', 10485760))

    def get_log_backup_count(self) -> int:
        return int(self.get_config('logging.backup_count', 3))
