"""
Configuration loading and management for Directory Sync.

This module handles loading configuration from YAML files and environment variables,
with validation and defaults.
"""

import os
import yaml
import logging
from typing import Dict, Any, List, Optional

logger = logging.getLogger(__name__)

DIRECTORY_TYPES = ('google_workspace', 'ldap')


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Environment variable mappings for secrets and deployment-specific fields
    ENV_OVERRIDES = {
        'registry.base_url': 'REGISTRY_BASE_URL',
        'registry.client_id': 'REGISTRY_CLIENT_ID',
        'registry.client_secret': 'REGISTRY_CLIENT_SECRET',
        'directory.group_prefix': 'DIRECTORY_GROUP_PREFIX',
        'directory.google_workspace.domain': 'GSUITE_DOMAIN',
        'directory.google_workspace.admin_email': 'GSUITE_ADMIN_EMAIL',
        'directory.google_workspace.credentials_file': 'GOOGLE_APPLICATION_CREDENTIALS',
        'directory.ldap.bind_password': 'LDAP_BIND_PASSWORD',
        'notifications.smtp_password': 'SMTP_PASSWORD',
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize config loader.

        Args:
            config_path: Path to config file. If None, uses CONFIG_PATH env var or 'config.yaml'
        """
        self.config_path = config_path or os.getenv('CONFIG_PATH', 'config.yaml')
        self.config = {}

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from file and apply environment overrides.

        Returns:
            Parsed and validated configuration dictionary

        Raises:
            ConfigurationError: If config file not found or validation fails
        """
        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(self.config, dict):
            raise ConfigurationError(f"Configuration file must contain a mapping: {self.config_path}")

        self._apply_env_overrides()
        self._validate()
        self._apply_defaults()

        logger.info(f"Configuration loaded successfully from {self.config_path}")
        return self.config

    def _apply_env_overrides(self):
        """Apply environment variable overrides."""
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

    def _validate(self):
        """Validate required configuration fields."""
        errors: List[str] = []

        registry_config = self.config.get('registry') or {}
        for field in ('base_url', 'client_id', 'client_secret'):
            if not registry_config.get(field):
                errors.append(f"Missing required registry field: {field}")

        base_url = registry_config.get('base_url')
        if base_url and not str(base_url).startswith(('https://', 'http://')):
            errors.append(f"registry.base_url must be an http(s) URL: {base_url}")

        directory_config = self.config.get('directory') or {}
        if not directory_config.get('group_prefix'):
            errors.append("Missing required directory field: group_prefix")

        concurrency = directory_config.get('concurrency')
        if concurrency is not None and (not isinstance(concurrency, int) or concurrency < 1):
            errors.append(f"directory.concurrency must be a positive integer, got {concurrency!r}")

        directory_type = directory_config.get('type', 'google_workspace')
        if directory_type not in DIRECTORY_TYPES:
            errors.append(f"Unknown directory type '{directory_type}', expected one of {', '.join(DIRECTORY_TYPES)}")
        elif directory_type == 'google_workspace':
            gws_config = directory_config.get('google_workspace') or {}
            for field in ('domain', 'admin_email'):
                if not gws_config.get(field):
                    errors.append(f"Missing required Google Workspace field: {field}")
        else:
            ldap_config = directory_config.get('ldap') or {}
            for field in ('server_url', 'bind_dn', 'bind_password', 'group_base_dn'):
                if not ldap_config.get(field):
                    errors.append(f"Missing required LDAP field: {field}")

        notification_config = self.config.get('notifications') or {}
        if notification_config.get('enable_email'):
            for field in ('smtp_server', 'email_from', 'email_to'):
                if not notification_config.get(field):
                    errors.append(f"Missing required notification field: {field}")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        registry_defaults = {
            'page_size': 100,
            'timeout_seconds': 10,
            'verify_ssl': True,
            'ca_cert_file': None
        }
        registry_config = self.config.setdefault('registry', {})
        for key, value in registry_defaults.items():
            registry_config.setdefault(key, value)

        directory_defaults = {
            'type': 'google_workspace',
            'provider_name': 'gsuite',
            'concurrency': 10
        }
        directory_config = self.config.setdefault('directory', {})
        for key, value in directory_defaults.items():
            directory_config.setdefault(key, value)

        if directory_config['type'] == 'google_workspace':
            gws_config = directory_config.setdefault('google_workspace', {})
            gws_config.setdefault('credentials_file', None)
            gws_config.setdefault('max_results', 200)
        else:
            ldap_defaults = {
                'group_filter': '(objectClass=group)',
                'user_base_dn': '',
                'page_size': 500
            }
            ldap_config = directory_config.setdefault('ldap', {})
            for key, value in ldap_defaults.items():
                ldap_config.setdefault(key, value)
            # Members are searched under the group base when no user base is given
            if not ldap_config['user_base_dn']:
                ldap_config['user_base_dn'] = ldap_config['group_base_dn']

        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'rotation': 'daily',
            'retention_days': 7,
            'console_output': True,
            'console_level': 'INFO'
        }
        logging_config = self.config.setdefault('logging', {})
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)

        error_defaults = {
            'max_retries': 3,
            'retry_wait_seconds': 1,
            'retry_backoff': 2.0,
            'retry_jitter': True
        }
        error_config = self.config.setdefault('error_handling', {})
        for key, value in error_defaults.items():
            error_config.setdefault(key, value)

        notification_defaults = {
            'enable_email': False,
            'email_on_failure': True,
            'email_on_success': False,
            'smtp_port': 587,
            'smtp_tls': True
        }
        notification_config = self.config.setdefault('notifications', {})
        for key, value in notification_defaults.items():
            notification_config.setdefault(key, value)


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to config file

    Returns:
        Loaded configuration dictionary
    """
    loader = ConfigLoader(config_path)
    return loader.load()
