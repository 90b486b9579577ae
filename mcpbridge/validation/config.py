"""
MCP Bridge Configuration - Configuration loading and validation.

This module provides the Config class for managing bridge configuration
from both global (~/.mcpbridge/config.yaml) and local (.mcpbridge/config.yaml)
sources, or from an explicit file.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from pydantic import BaseModel, Field, ValidationError


class ConfigError(Exception):
    """Raised when there's a configuration error."""

    pass


class ServerParameters(BaseModel):
    """How to launch one MCP server process."""

    command: str
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    allowed_directory: Optional[str] = None
    enabled: bool = True


class LLMConfig(BaseModel):
    """Configuration for the language-model client."""

    provider: str = "openai"
    model: str = "gpt-4o-mini"
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 4096
    timeout: int = 120
    system_prompt: Optional[str] = None
    max_history: int = 50


class BridgeSettings(BaseModel):
    """Limits of the tool-calling loop."""

    max_iterations: int = Field(default=3, ge=1)
    request_timeout: float = Field(default=30.0, gt=0)
    tool_call_timeout: float = Field(default=30.0, gt=0)
    max_parallel_tools: int = Field(default=4, ge=1)
    require_all_servers: bool = False
    tool_instructions: Dict[str, str] = Field(default_factory=dict)


class LoggingConfig(BaseModel):
    """Configuration for log output."""

    level: str = "INFO"
    file: Optional[str] = None


class BridgeConfig(BaseModel):
    """Complete bridge configuration schema."""

    llm: LLMConfig = Field(default_factory=LLMConfig)
    mcp_server_name: str = "primary"
    mcp_servers: Dict[str, ServerParameters] = Field(default_factory=dict)
    bridge: BridgeSettings = Field(default_factory=BridgeSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def primary_server(self) -> Optional[ServerParameters]:
        return self.mcp_servers.get(self.mcp_server_name)

    def enabled_servers(self) -> List[Tuple[str, ServerParameters]]:
        """Enabled servers, the primary one first."""
        servers = [(name, params) for name, params in self.mcp_servers.items() if params.enabled]
        servers.sort(key=lambda item: item[0] != self.mcp_server_name)
        return servers


class Config:
    """
    Bridge configuration manager.

    Handles loading, merging, and validating configuration from:
    - Global: ~/.mcpbridge/config.yaml
    - Local: .mcpbridge/config.yaml (project-specific)

    Local configuration overrides global configuration.

    Example:
        >>> config = Config.load()
        >>> config.merged.llm.model
        'gpt-4o-mini'
        >>> config.set_model("llama3.1", global_=True)
        >>> config.save()
    """

    GLOBAL_CONFIG_DIR = Path.home() / ".mcpbridge"
    LOCAL_CONFIG_DIR = Path(".mcpbridge")

    def __init__(
        self,
        global_config: Optional[Dict[str, Any]] = None,
        local_config: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize Config.

        Args:
            global_config: Global configuration dictionary.
            local_config: Local (project) configuration dictionary.
        """
        self._global_config = global_config or {}
        self._local_config = local_config or {}
        self._global_path: Optional[Path] = self.GLOBAL_CONFIG_DIR / "config.yaml"
        self._local_path: Optional[Path] = None
        self._merged: Optional[BridgeConfig] = None

    @classmethod
    def load(cls) -> "Config":
        """
        Load configuration from default locations.

        Returns:
            Config instance with loaded configuration.
        """
        local_path = cls._find_local_config()
        config = cls(
            global_config=cls._load_yaml(cls.GLOBAL_CONFIG_DIR / "config.yaml"),
            local_config=cls._load_yaml(local_path),
        )
        config._local_path = local_path
        return config

    @classmethod
    def from_file(cls, path: Path) -> "Config":
        """Load configuration from a single file, ignoring the default locations."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        config = cls(local_config=cls._load_yaml(path))
        config._global_path = None
        config._local_path = path
        return config

    @classmethod
    def _load_yaml(cls, path: Optional[Path]) -> Dict[str, Any]:
        """Load YAML file if it exists."""
        if path is None or not path.exists():
            return {}

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
                return data if data else {}
        except Exception as e:
            raise ConfigError(f"Failed to load config from {path}: {e}")

    @classmethod
    def _find_local_config(cls) -> Optional[Path]:
        """Find the local config file by walking up the directory tree."""
        current = Path.cwd()
        while current != current.parent:
            config_path = current / cls.LOCAL_CONFIG_DIR / "config.yaml"
            if config_path.exists():
                return config_path
            current = current.parent
        return None

    def get_merged_config(self) -> Dict[str, Any]:
        """Get the merged configuration as a dictionary."""
        return self._deep_merge(self._global_config.copy(), self._local_config)

    @property
    def merged(self) -> BridgeConfig:
        """Get the validated merged configuration."""
        if self._merged is None:
            try:
                self._merged = BridgeConfig(**self.get_merged_config())
            except (ValidationError, TypeError) as e:
                raise ConfigError(f"Invalid configuration: {e}")
            if not self._merged.llm.api_key:
                self._merged.llm.api_key = self.get_api_key(self._merged.llm.provider)
        return self._merged

    def set_model(self, model_name: str, global_: bool = False) -> None:
        """
        Set the model used by the LLM client.

        Args:
            model_name: The model to use, optionally as ``provider/model``.
            global_: Whether to set globally or locally.
        """
        config = self._global_config if global_ else self._local_config
        llm = config.setdefault("llm", {})
        if "/" in model_name:
            llm["provider"], llm["model"] = model_name.split("/", 1)
        else:
            llm["model"] = model_name
        self._merged = None  # Reset cache

    def get_api_key(self, provider_name: str) -> Optional[str]:
        """
        Get API key for a provider.

        Checks config first, then ``<PROVIDER>_API_KEY`` environment variables.
        """
        llm = self.get_merged_config().get("llm") or {}
        if llm.get("provider", "openai") == provider_name and llm.get("api_key"):
            return llm["api_key"]
        return os.environ.get(f"{provider_name.upper()}_API_KEY")

    def save(self) -> None:
        """Save configuration to files."""
        if self._global_path:
            self._save_yaml(self._global_path, self._global_config)
        if self._local_path:
            self._save_yaml(self._local_path, self._local_config)

    def _save_yaml(self, path: Path, data: Dict[str, Any]) -> None:
        """Save data to a YAML file."""
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries, with override taking precedence."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    @classmethod
    def create_default_global(cls) -> Path:
        """Create default global configuration file."""
        config_dir = cls.GLOBAL_CONFIG_DIR
        config_file = config_dir / "config.yaml"

        if config_file.exists():
            return config_file

        config_dir.mkdir(parents=True, exist_ok=True)

        default_config = {
            "llm": {
                "provider": "ollama",
                "model": "llama3.1",
                "base_url": "http://localhost:11434",
                "temperature": 0.7,
                "max_tokens": 4096,
            },
            "mcp_server_name": "primary",
            "mcp_servers": {
                "primary": {
                    "command": "npx",
                    "args": ["-y", "@modelcontextprotocol/server-filesystem", str(Path.home())],
                    "allowed_directory": str(Path.home()),
                },
            },
            "bridge": {
                "max_iterations": 3,
                "request_timeout": 30.0,
                "tool_call_timeout": 30.0,
            },
            "logging": {"level": "INFO"},
        }

        with open(config_file, "w") as f:
            yaml.dump(default_config, f, default_flow_style=False, sort_keys=False)

        return config_file
