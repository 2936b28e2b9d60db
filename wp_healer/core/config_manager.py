"""
ConfigManager Component
Responsible for loading and managing healer configuration from defaults,
config files and environment variables.
"""

import os
import json
import yaml
import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

class ConfigManager:
    """
    ConfigManager loads and validates configuration from:
    - Default values
    - JSON/YAML config files
    - Environment variables (HEALER_* prefix)
    """

    def __init__(self, config_file: Optional[str] = None, search_default_paths: bool = True):
        """
        Initialize the ConfigManager

        Args:
            config_file (str, optional): Path to a config file to load
            search_default_paths (bool): Also look for config files in the default locations
        """
        self.config: Dict[str, Any] = {}

        self.config_paths = []
        if search_default_paths:
            self.config_paths = [
                './healer.yaml',
                './healer.yml',
                './healer.json',
                os.path.expanduser('~/.wp_healer/config.yaml'),
                os.path.expanduser('~/.wp_healer/config.json')
            ]

        if config_file:
            self.config_paths.insert(0, config_file)

        self._load_defaults()
        self._load_config_files()
        self._load_environment_variables()
        self._validate_config()

        logger.info("ConfigManager initialized")
        logger.debug(f"Loaded configuration for {len(self.config)} settings")

    def _load_defaults(self):
        """Load default configuration values"""
        self.config = {
            'log_level': 'INFO',
            'log_dir': './logs',
            'state_file': './state/healer_state.json',

            # Remote command execution
            'executor': {
                'use_ssh': False,
                'ssh_user': 'root',
                'ssh_options': ['-o', 'BatchMode=yes', '-o', 'StrictHostKeyChecking=accept-new'],
                'max_concurrent': 5,
                'command_delay_ms': 100,
                'default_timeout_ms': 30000,
                'wp_cli_timeout_ms': 120000
            },

            # Diagnosis
            'diagnosis': {
                'http_timeout': 10,          # seconds per HTTP probe attempt
                'maintenance_stale_minutes': 10,
                'log_tail_lines': 100,
                'default_profile': 'LIGHT'
            },

            # Per-profile overrides, e.g. {'LIGHT': {'cache_ttl': 120}}
            'profiles': {},

            # Healing
            'healing': {
                'fallback_themes': [
                    'twentytwentyfour',
                    'twentytwentythree',
                    'twentytwentytwo',
                    'twentytwentyone',
                    'twentytwenty'
                ],
                'workers': 2,
                'job_timeout': 600,          # seconds
                'min_verification_score': 80
            },

            # Retry and circuit breaker
            'retry': {
                'circuit_breaker_reset_minutes': 30
            },

            # Backups
            'backup': {
                'root_dir': '/var/backups/healer',
                'timeout_ms': 600000
            },

            # Monitoring
            'monitoring': {
                'heartbeat_interval': 15,
                'metrics_period_days': 30
            }
        }

    def _load_config_files(self):
        """Load configuration from the first readable config file"""
        for config_path in self.config_paths:
            if os.path.exists(config_path):
                try:
                    with open(config_path, 'r') as file:
                        if config_path.endswith('.json'):
                            file_config = json.load(file)
                        elif config_path.endswith(('.yaml', '.yml')):
                            file_config = yaml.safe_load(file)
                        else:
                            logger.warning(f"Unsupported config file format: {config_path}")
                            continue

                    if file_config:
                        self._deep_merge(self.config, file_config)
                    logger.info(f"Loaded configuration from {config_path}")
                    break
                except (OSError, ValueError, yaml.YAMLError) as e:
                    logger.error(f"Error loading config from {config_path}: {str(e)}")

    def _load_environment_variables(self):
        """Load configuration from environment variables"""
        env_mappings = {
            'HEALER_LOG_LEVEL': 'log_level',
            'HEALER_LOG_DIR': 'log_dir',
            'HEALER_STATE_FILE': 'state_file',

            'HEALER_USE_SSH': 'executor.use_ssh',
            'HEALER_SSH_USER': 'executor.ssh_user',
            'HEALER_MAX_CONCURRENT': 'executor.max_concurrent',
            'HEALER_COMMAND_TIMEOUT_MS': 'executor.default_timeout_ms',

            'HEALER_HTTP_TIMEOUT': 'diagnosis.http_timeout',
            'HEALER_DEFAULT_PROFILE': 'diagnosis.default_profile',

            'HEALER_WORKERS': 'healing.workers',
            'HEALER_JOB_TIMEOUT': 'healing.job_timeout',

            'HEALER_BREAKER_RESET_MINUTES': 'retry.circuit_breaker_reset_minutes',
            'HEALER_BACKUP_DIR': 'backup.root_dir'
        }

        for env_var, config_path in env_mappings.items():
            value = os.environ.get(env_var)
            if value is not None:
                if value.lower() in ('true', 'yes'):
                    value = True
                elif value.lower() in ('false', 'no'):
                    value = False
                elif value.isdigit():
                    value = int(value)
                elif value.replace('.', '', 1).isdigit() and value.count('.') <= 1:
                    value = float(value)

                self.set(config_path, value)
                logger.debug(f"Set {config_path} from environment variable {env_var}")

    def _validate_config(self):
        """Validate configuration values, resetting invalid ones to safe defaults"""
        if self.get('executor.max_concurrent', 0) < 1:
            logger.warning("executor.max_concurrent must be at least 1, using 1")
            self.set('executor.max_concurrent', 1)

        if self.get('healing.workers', 0) < 1:
            logger.warning("healing.workers must be at least 1, using 1")
            self.set('healing.workers', 1)

        if not self.get('healing.fallback_themes'):
            logger.warning("No fallback themes configured, theme faults cannot be healed")

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """
        Deep merge two dictionaries

        Args:
            base (Dict[str, Any]): Base dictionary
            update (Dict[str, Any]): Dictionary to merge on top

        Returns:
            Dict[str, Any]: Merged dictionary
        """
        for key, value in update.items():
            if isinstance(value, dict) and key in base and isinstance(base[key], dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value
        return base

    def get(self, path: str, default: Any = None) -> Any:
        """
        Get a configuration value by path

        Args:
            path (str): Dot-separated path to the config value
            default (Any, optional): Default value if path not found

        Returns:
            Any: Configuration value
        """
        current = self.config
        try:
            for part in path.split('.'):
                current = current[part]
            return current
        except (KeyError, TypeError):
            return default

    def set(self, path: str, value: Any):
        """
        Set a configuration value by path

        Args:
            path (str): Dot-separated path to the config value
            value (Any): Value to set
        """
        parts = path.split('.')

        current = self.config
        for part in parts[:-1]:
            if part not in current or not isinstance(current[part], dict):
                current[part] = {}
            current = current[part]

        current[parts[-1]] = value

    def get_all(self) -> Dict[str, Any]:
        """Get the entire configuration dictionary"""
        return self.config

    def save_to_file(self, file_path: str) -> bool:
        """
        Save current configuration to a file

        Args:
            file_path (str): Path to save the configuration

        Returns:
            bool: True if successful, False otherwise
        """
        try:
            os.makedirs(os.path.dirname(os.path.abspath(file_path)), exist_ok=True)

            if file_path.endswith('.json'):
                with open(file_path, 'w') as f:
                    json.dump(self.config, f, indent=2)
            elif file_path.endswith(('.yaml', '.yml')):
                with open(file_path, 'w') as f:
                    yaml.dump(self.config, f, default_flow_style=False)
            else:
                logger.error(f"Unsupported file format for {file_path}")
                return False

            logger.info(f"Configuration saved to {file_path}")
            return True
        except OSError as e:
            logger.error(f"Error saving configuration to {file_path}: {str(e)}")
            return False
