"""
Configuration management for the Chat Orchestrator.
"""

import json
import os
from dataclasses import asdict
from pathlib import Path
from typing import Optional, Dict, Any, Mapping
import logging

from ..models.config import (
    SystemConfig,
    ProviderConfig,
    ContextConfig,
    ImageBudget,
    QualityGateConfig,
    ToolConfig,
    StreamingConfig,
    LoggingConfig,
)
from .error_handling import ConfigurationError


# Environment variables applied over the file configuration
TOOL_ENV_KEYS = {
    "brave_api_key": "BRAVE_SEARCH_API_KEY",
    "e2b_api_key": "E2B_API_KEY",
}


class ConfigManager:
    """
    Manages system configuration loading, validation, and updates.

    File values are loaded first; credentials are then taken from the
    environment so keys never need to be written to disk.
    """

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None):
        self.config_path = config_path or "config.json"
        self.environ = os.environ if environ is None else environ
        self._config: Optional[SystemConfig] = None
        self.logger = logging.getLogger(__name__)

    def load_config(self) -> SystemConfig:
        """
        Load configuration from file or create default configuration.

        Returns:
            SystemConfig instance

        Raises:
            ConfigurationError: If configuration loading fails
        """
        try:
            if Path(self.config_path).exists():
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    config_data = json.load(f)
                self._config = self._dict_to_config(config_data)
                self.logger.info(f"Configuration loaded from {self.config_path}")
            else:
                self._config = SystemConfig()
                self.save_config()  # Save default config
                self.logger.info("Default configuration created")
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration: {str(e)}")

        self._apply_environment(self._config)
        self._validate_config(self._config)
        return self._config

    def save_config(self, config: Optional[SystemConfig] = None) -> None:
        """
        Save configuration to file. API keys are never persisted.

        Args:
            config: Configuration to save (uses current config if None)

        Raises:
            ConfigurationError: If configuration saving fails
        """
        config_to_save = config or self._config
        if not config_to_save:
            raise ConfigurationError("No configuration to save")

        try:
            config_dict = self._config_to_dict(config_to_save)
            for provider in config_dict["providers"].values():
                provider["api_key"] = ""
            for key in TOOL_ENV_KEYS:
                config_dict["tools"][key] = ""

            Path(self.config_path).parent.mkdir(parents=True, exist_ok=True)

            with open(self.config_path, 'w', encoding='utf-8') as f:
                json.dump(config_dict, f, indent=2, default=str)

            self.logger.info(f"Configuration saved to {self.config_path}")

        except Exception as e:
            raise ConfigurationError(f"Failed to save configuration: {str(e)}")

    def get_config(self) -> SystemConfig:
        """
        Get current configuration, loading if necessary.

        Returns:
            SystemConfig instance
        """
        if self._config is None:
            self._config = self.load_config()
        return self._config

    def update_config(self, updates: Dict[str, Any]) -> SystemConfig:
        """
        Update configuration with new values.

        Args:
            updates: Dictionary of configuration updates

        Returns:
            Updated SystemConfig instance
        """
        current_config = self.get_config()
        config_dict = self._config_to_dict(current_config)

        self._deep_update(config_dict, updates)

        updated_config = self._dict_to_config(config_dict)
        self._apply_environment(updated_config)
        self._validate_config(updated_config)

        self._config = updated_config
        self.save_config()

        return updated_config

    def _apply_environment(self, config: SystemConfig) -> None:
        """Take provider and tool credentials from the environment."""
        for provider in config.providers.values():
            if provider.env_key_name and self.environ.get(provider.env_key_name):
                provider.api_key = self.environ[provider.env_key_name].strip()

        ollama = config.providers.get("ollama")
        if ollama and self.environ.get("OLLAMA_BASE_URL"):
            ollama.base_url = self.environ["OLLAMA_BASE_URL"].strip()
            ollama.enabled = True

        for attr, env_name in TOOL_ENV_KEYS.items():
            if self.environ.get(env_name):
                setattr(config.tools, attr, self.environ[env_name].strip())

    def _validate_config(self, config: SystemConfig) -> None:
        """
        Validate configuration settings.

        Args:
            config: Configuration to validate

        Raises:
            ConfigurationError: If validation fails
        """
        if not config.providers:
            raise ConfigurationError("At least one provider must be configured", config_key="providers")

        for name, provider in config.providers.items():
            if provider.kind not in ("openai_compatible", "anthropic", "ollama"):
                raise ConfigurationError(f"Provider {name} has unknown kind {provider.kind}", config_key=f"providers.{name}.kind")
            if provider.timeout_seconds <= 0:
                raise ConfigurationError(f"Provider {name} timeout must be positive", config_key=f"providers.{name}.timeout_seconds")
            if provider.enabled and provider.kind != "ollama" and not provider.api_key:
                self.logger.debug(f"Provider {name} has no credential ({provider.env_key_name}) and will be unavailable")

        if not 0 < config.context.history_fraction <= 1:
            raise ConfigurationError("History fraction must be between 0 and 1", config_key="context.history_fraction")

        for name, budget in config.context.image_budgets.items():
            if not 0 < budget.history_fraction <= 1 or budget.max_messages <= 0:
                raise ConfigurationError(f"Invalid image budget for {name}", config_key=f"context.image_budgets.{name}")

        if config.context.min_placeholder_length < 0:
            raise ConfigurationError("Minimum placeholder length cannot be negative", config_key="context.min_placeholder_length")

        if not 0 <= config.quality_gate.fallback_threshold <= 10:
            raise ConfigurationError("Quality threshold must be between 0 and 10", config_key="quality_gate.fallback_threshold")

        if config.streaming.channel_size <= 0:
            raise ConfigurationError("Channel size must be positive", config_key="streaming.channel_size")

    def _dict_to_config(self, config_dict: Dict[str, Any]) -> SystemConfig:
        """Convert dictionary to SystemConfig object."""
        defaults = SystemConfig()

        providers = dict(defaults.providers)
        for name, data in config_dict.get('providers', {}).items():
            base = asdict(providers[name]) if name in providers else {"name": name, "display_name": name}
            base.update(data)
            providers[name] = ProviderConfig(**base)

        context_data = dict(config_dict.get('context', {}))
        image_budgets = {
            name: ImageBudget(**budget)
            for name, budget in context_data.pop('image_budgets', {}).items()
        }
        default_image_budget = context_data.pop('default_image_budget', None)
        context = ContextConfig(**context_data)
        if image_budgets:
            context.image_budgets = image_budgets
        if default_image_budget:
            context.default_image_budget = ImageBudget(**default_image_budget)

        return SystemConfig(
            providers=providers,
            context=context,
            quality_gate=QualityGateConfig(**config_dict.get('quality_gate', {})),
            tools=ToolConfig(**config_dict.get('tools', {})),
            streaming=StreamingConfig(**config_dict.get('streaming', {})),
            logging_config=LoggingConfig(**config_dict.get('logging_config', {})),
            debug_mode=config_dict.get('debug_mode', False),
            enable_fallback=config_dict.get('enable_fallback', True),
            metadata=config_dict.get('metadata', {})
        )

    def _config_to_dict(self, config: SystemConfig) -> Dict[str, Any]:
        """Convert SystemConfig object to dictionary."""
        return asdict(config)

    def _deep_update(self, base_dict: Dict[str, Any], updates: Dict[str, Any]) -> None:
        """Recursively update nested dictionary."""
        for key, value in updates.items():
            if key in base_dict and isinstance(base_dict[key], dict) and isinstance(value, dict):
                self._deep_update(base_dict[key], value)
            else:
                base_dict[key] = value
