"""
Configuration management for Cloud Atlas.

This module handles loading configuration values from config.yaml and turning
them into an immutable PluginSettings value. Components receive the settings
they need explicitly; nothing reads a global settings object.
"""

import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field

from .models import LlmOptions, Options


class OpenAiSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    api_key: str = ""
    model_id: str = "gpt-4o"


class AzureAiSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    api_key: str = ""
    deployment_id: str = ""
    endpoint: str = ""
    api_version: str = "2024-02-01"


class PluginSettings(BaseModel):
    """
    Immutable settings snapshot threaded through every component.
    """

    model_config = ConfigDict(frozen=True)

    provider: str = "cloudatlas"
    api_key: str = ""
    endpoint: str = "https://api.cloud-atlas.ai"
    timeout_mins: float = 5
    poll_interval: float = 5.0
    flows_folder: str = "CloudAtlas"
    create_new_file: bool = False
    options: Options = Field(default_factory=Options)
    llm_options: LlmOptions = Field(default_factory=LlmOptions)
    openai: OpenAiSettings = Field(default_factory=OpenAiSettings)
    azureai: AzureAiSettings = Field(default_factory=AzureAiSettings)
    canvas_resolve_links: bool = False
    canvas_resolve_backlinks: bool = False
    canvas_edge_scoped: bool = False
    canvas_batch_size: int = 3
    url_timeout: float = 30.0


_DEFAULT_CONFIG: Dict[str, Any] = {
    "provider": "cloudatlas",
    "api_key": "",
    "endpoint": "https://api.cloud-atlas.ai",
    "timeout_mins": 5,
    "poll_interval": 5.0,
    "flows_folder": "CloudAtlas",
    "create_new_file": False,
    "url_timeout": 30.0,
    "options": {
        "generate_embeddings": False,
        "entity_recognition": False,
        "wikify": []
    },
    "llm_options": {
        "temperature": None,
        "max_tokens": None
    },
    "openai": {
        "api_key": "",
        "model_id": "gpt-4o"
    },
    "azureai": {
        "api_key": "",
        "deployment_id": "",
        "endpoint": "",
        "api_version": "2024-02-01"
    },
    "canvas": {
        "resolve_links": False,
        "resolve_backlinks": False,
        "edge_scoped": False,
        "batch_size": 3
    },
    "vault": {
        "path": "."
    },
    "database": {
        "filename": "cloudatlas.db"
    },
    "logging": {
        "level": "INFO",
        "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        "file": "cloudatlas.log"
    }
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigManager:
    """
    Manages configuration loading and access for Cloud Atlas.
    """

    def __init__(self, config_path: str = "config.yaml"):
        """
        Initialize the configuration manager.

        Args:
            config_path: Path to the configuration file
        """
        self.config_path = Path(config_path)
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from YAML file, layered over the defaults."""
        try:
            if not self.config_path.exists():
                raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

            with open(self.config_path, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f) or {}

            self._config = _deep_merge(_DEFAULT_CONFIG, loaded)
            logging.info(f"Configuration loaded from {self.config_path}")

        except (OSError, yaml.YAMLError) as e:
            logging.warning(f"Failed to load configuration, using defaults: {e}")
            self._config = copy.deepcopy(_DEFAULT_CONFIG)

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.

        Args:
            key_path: Dot-separated path to the configuration value (e.g., "openai.model_id")
            default: Default value if key is not found

        Returns:
            The configuration value
        """
        value: Any = self._config

        for key in key_path.split('.'):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def get_section(self, section: str) -> Dict[str, Any]:
        """Get an entire configuration section."""
        return self._config.get(section, {})

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load_config()

    @property
    def vault_path(self) -> str:
        return self.get("vault.path", ".")

    @property
    def database_filename(self) -> str:
        return self.get("database.filename", "cloudatlas.db")

    @property
    def log_filename(self) -> Optional[str]:
        return self.get("logging.file")

    def to_settings(self) -> PluginSettings:
        """
        Build the immutable settings snapshot from the loaded configuration.

        Returns:
            A frozen PluginSettings instance
        """
        canvas = self.get_section("canvas")
        return PluginSettings(
            provider=self.get("provider"),
            api_key=self.get("api_key") or "",
            endpoint=self.get("endpoint"),
            timeout_mins=self.get("timeout_mins"),
            poll_interval=self.get("poll_interval"),
            flows_folder=self.get("flows_folder"),
            create_new_file=bool(self.get("create_new_file")),
            url_timeout=self.get("url_timeout"),
            options=Options(**self.get_section("options")),
            llm_options=LlmOptions(**self.get_section("llm_options")),
            openai=OpenAiSettings(**self.get_section("openai")),
            azureai=AzureAiSettings(**self.get_section("azureai")),
            canvas_resolve_links=bool(canvas.get("resolve_links")),
            canvas_resolve_backlinks=bool(canvas.get("resolve_backlinks")),
            canvas_edge_scoped=bool(canvas.get("edge_scoped")),
            canvas_batch_size=canvas.get("batch_size", 3),
        )
