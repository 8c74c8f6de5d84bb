"""
Configuration loading and management for AD Cloud Group Sync.

This module handles loading configuration from YAML files and environment variables,
with validation and defaults. The loaded configuration is frozen into a
SyncConfig object that is passed explicitly to the orchestrator.
"""

import os
import yaml
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Any, List, Mapping, Optional, Tuple

from group_sync.models import GroupMapping

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Environment variable mappings for sensitive fields
    ENV_OVERRIDES = {
        'ldap.bind_password': 'LDAP_BIND_PASSWORD',
        'cloud.client_secret': 'CLOUD_CLIENT_SECRET',
        'cloud.certificate_password': 'CLOUD_CERTIFICATE_PASSWORD',
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
            raise ConfigurationError(f"Configuration root must be a mapping: {self.config_path}")

        self._apply_env_overrides()
        self._validate()
        self._apply_defaults()

        logger.info(f"Configuration loaded successfully from {self.config_path}")
        return self.config

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

    def _validate(self):
        """Validate required configuration fields."""
        errors = []

        # Source directory
        ldap_config = self.config.get('ldap') or {}
        for field in ['server_url', 'bind_dn', 'bind_password']:
            if not ldap_config.get(field):
                errors.append(f"Missing required LDAP field: {field}")

        # Cloud tenant and application
        cloud_config = self.config.get('cloud') or {}
        for field in ['tenant_id', 'client_id']:
            if not cloud_config.get(field):
                errors.append(f"Missing required cloud field: {field}")

        has_key_pair = cloud_config.get('certificate_thumbprint') and cloud_config.get('private_key_file')
        if not (has_key_pair or cloud_config.get('certificate_file') or cloud_config.get('client_secret')):
            errors.append("Cloud credential missing: configure certificate_thumbprint with private_key_file, "
                          "certificate_file, or client_secret")

        # Group mappings
        try:
            mappings = parse_group_mappings(self.config.get('group_mappings'))
        except ConfigurationError as e:
            errors.append(str(e))
        else:
            if not mappings:
                errors.append("At least one group mapping must be configured")
            seen = set()
            for mapping in mappings:
                key = (mapping.source_group.lower(), mapping.cloud_group.lower())
                if key in seen:
                    errors.append(f"Duplicate group mapping: {mapping}")
                seen.add(key)

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        ldap_defaults = {
            'search_base_dn': '',
            'verify_ssl': True,
            'connection_timeout': 10,
            'receive_timeout': 30
        }
        ldap_config = self.config.setdefault('ldap', {})
        for key, value in ldap_defaults.items():
            ldap_config.setdefault(key, value)

        cloud_defaults = {
            'graph_url': 'https://graph.microsoft.com/v1.0',
            'exchange_url': 'https://outlook.office365.com/adminapi/beta',
            'authority_host': 'https://login.microsoftonline.com',
            'page_size': 999,
            'verify_ssl': True,
            'timeout': 30
        }
        cloud_config = self.config.setdefault('cloud', {})
        for key, value in cloud_defaults.items():
            cloud_config.setdefault(key, value)
        cloud_config.setdefault('organization', cloud_config.get('tenant_id'))

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
            'retry_wait_seconds': 5,
            'retry_backoff': 2.0
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


def parse_group_mappings(raw: Any) -> List[GroupMapping]:
    """
    Parse the group_mappings section in either of its two forms.

    The ordered mapping form pairs source group identifiers with cloud group
    identifiers directly. The list form holds entries with source_group and
    cloud_group keys. Order is preserved in both cases.

    Args:
        raw: The group_mappings value from the configuration file

    Returns:
        List of GroupMapping in configuration order

    Raises:
        ConfigurationError: If the section is malformed
    """
    if raw is None:
        return []

    if isinstance(raw, dict):
        entries = [{'source_group': key, 'cloud_group': value} for key, value in raw.items()]
    elif isinstance(raw, list):
        entries = raw
    else:
        raise ConfigurationError("group_mappings must be a mapping or a list")

    mappings = []
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ConfigurationError(f"group_mappings[{i}] must be a mapping")
        source_group = str(entry.get('source_group') or '').strip()
        cloud_group = str(entry.get('cloud_group') or '').strip()
        if not source_group:
            raise ConfigurationError(f"Missing source_group for group_mappings[{i}]")
        if not cloud_group:
            raise ConfigurationError(f"Missing cloud_group for group_mappings[{i}]")
        mappings.append(GroupMapping(source_group, cloud_group))

    return mappings


def _freeze(value: Any) -> Any:
    """Recursively turn dicts into read-only views and lists into tuples."""
    if isinstance(value, dict):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(item) for item in value)
    return value


@dataclass(frozen=True)
class SyncConfig:
    """Immutable configuration for one sync run."""

    ldap: Mapping[str, Any]
    cloud: Mapping[str, Any]
    mappings: Tuple[GroupMapping, ...]
    logging: Mapping[str, Any]
    error_handling: Mapping[str, Any]
    notifications: Mapping[str, Any]
    source_path: Optional[str] = None

    @classmethod
    def from_dict(cls, config: Dict[str, Any], source_path: Optional[str] = None) -> 'SyncConfig':
        """Build a SyncConfig from a validated configuration dictionary."""
        return cls(
            ldap=_freeze(config.get('ldap') or {}),
            cloud=_freeze(config.get('cloud') or {}),
            mappings=tuple(parse_group_mappings(config.get('group_mappings'))),
            logging=_freeze(config.get('logging') or {}),
            error_handling=_freeze(config.get('error_handling') or {}),
            notifications=_freeze(config.get('notifications') or {}),
            source_path=source_path
        )


def load_config(config_path: Optional[str] = None) -> SyncConfig:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to config file

    Returns:
        Loaded, validated and frozen configuration
    """
    loader = ConfigLoader(config_path)
    return SyncConfig.from_dict(loader.load(), source_path=loader.config_path)
