"""Tests for configuration management."""

import tempfile
from pathlib import Path

import pytest
import yaml

from mcpbridge.validation.config import BridgeConfig, Config, ConfigError


class TestConfig:
    """Tests for Config class."""

    @pytest.fixture
    def temp_config_dir(self):
        """Create a temporary config directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir)

    def test_deep_merge(self):
        """Test deep merging of dictionaries."""
        config = Config()

        base = {
            "a": 1,
            "b": {"c": 2, "d": 3},
            "e": [1, 2, 3],
        }

        override = {
            "b": {"c": 10, "f": 5},
            "g": "new",
        }

        result = config._deep_merge(base, override)

        assert result["a"] == 1
        assert result["b"]["c"] == 10
        assert result["b"]["d"] == 3
        assert result["b"]["f"] == 5
        assert result["e"] == [1, 2, 3]
        assert result["g"] == "new"

    def test_get_merged_config(self):
        """Test getting merged configuration."""
        global_config = {
            "llm": {"provider": "ollama", "model": "llama3.1"},
            "mcp_servers": {"primary": {"command": "npx"}},
        }
        local_config = {
            "llm": {"model": "qwen2.5"},
        }

        config = Config(global_config=global_config, local_config=local_config)
        merged = config.get_merged_config()

        # Local should override global
        assert merged["llm"]["model"] == "qwen2.5"
        # Global should be preserved
        assert merged["llm"]["provider"] == "ollama"
        assert merged["mcp_servers"]["primary"]["command"] == "npx"

    def test_merged_is_validated(self):
        """Test that the merged configuration is validated."""
        config = Config(global_config={"bridge": {"max_iterations": 5}})
        assert isinstance(config.merged, BridgeConfig)
        assert config.merged.bridge.max_iterations == 5

    def test_invalid_config_raises(self):
        """Test that invalid values raise ConfigError."""
        config = Config(global_config={"bridge": {"max_iterations": 0}})
        with pytest.raises(ConfigError):
            config.merged

    def test_server_without_command_is_invalid(self):
        """Test server without command is invalid."""
        config = Config(global_config={"mcp_servers": {"primary": {"args": []}}})
        with pytest.raises(ConfigError):
            config.merged

    def test_set_model(self):
        """Test setting the model."""
        config = Config(global_config={}, local_config={})

        config.set_model("llama3.1", global_=False)
        assert config._local_config["llm"]["model"] == "llama3.1"

        config.set_model("groq/llama-3.3-70b", global_=True)
        assert config._global_config["llm"] == {"provider": "groq", "model": "llama-3.3-70b"}

    def test_set_model_resets_cache(self):
        """Test set model resets cache."""
        config = Config(global_config={}, local_config={})
        assert config.merged.llm.model == "gpt-4o-mini"
        config.set_model("gpt-4o")
        assert config.merged.llm.model == "gpt-4o"

    def test_api_key_from_config(self, monkeypatch):
        """Test reading the API key from configuration."""
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        config = Config(global_config={"llm": {"provider": "openai", "api_key": "from-config"}})
        assert config.get_api_key("openai") == "from-config"
        assert config.merged.llm.api_key == "from-config"

    def test_api_key_from_environment(self, monkeypatch):
        """Test falling back to the API key environment variable."""
        monkeypatch.setenv("GROQ_API_KEY", "from-env")
        config = Config(global_config={"llm": {"provider": "groq"}})
        assert config.merged.llm.api_key == "from-env"

    def test_from_file(self, temp_config_dir):
        """Test loading configuration from an explicit file."""
        path = temp_config_dir / "bridge.yaml"
        path.write_text(yaml.dump({
            "mcp_server_name": "files",
            "mcp_servers": {"files": {"command": "npx", "args": ["-y", "server"]}},
        }))

        config = Config.from_file(path)
        assert config.merged.primary_server().args == ["-y", "server"]

    def test_from_file_missing(self, temp_config_dir):
        """Test that a missing config file raises ConfigError."""
        with pytest.raises(ConfigError):
            Config.from_file(temp_config_dir / "missing.yaml")

    def test_from_file_invalid_yaml(self, temp_config_dir):
        """Test that unparsable YAML raises ConfigError."""
        path = temp_config_dir / "bad.yaml"
        path.write_text("llm: [unclosed")
        with pytest.raises(ConfigError):
            Config.from_file(path)

    def test_save_from_file_leaves_global_alone(self, temp_config_dir, monkeypatch):
        """Test save from file leaves global alone."""
        global_dir = temp_config_dir / "home"
        monkeypatch.setattr(Config, "GLOBAL_CONFIG_DIR", global_dir)
        path = temp_config_dir / "bridge.yaml"
        path.write_text(yaml.dump({"llm": {"model": "a"}}))

        config = Config.from_file(path)
        config.set_model("b")
        config.save()

        assert yaml.safe_load(path.read_text())["llm"]["model"] == "b"
        assert not (global_dir / "config.yaml").exists()

    def test_create_default_global(self, temp_config_dir, monkeypatch):
        """Test writing the default global configuration."""
        monkeypatch.setattr(Config, "GLOBAL_CONFIG_DIR", temp_config_dir / "home")
        path = Config.create_default_global()

        data = yaml.safe_load(path.read_text())
        assert data["llm"]["provider"] == "ollama"
        assert data["mcp_servers"]["primary"]["command"] == "npx"
        BridgeConfig(**data)


class TestBridgeConfig:
    """Tests for BridgeConfig schema."""

    def test_default_config(self):
        """Test creating default configuration."""
        config = BridgeConfig()

        assert config.llm.max_tokens == 4096
        assert config.llm.temperature == 0.7
        assert config.bridge.max_iterations == 3
        assert config.bridge.request_timeout == 30.0
        assert config.bridge.tool_call_timeout == 30.0
        assert len(config.mcp_servers) == 0
        assert config.primary_server() is None

    def test_enabled_servers_primary_first(self):
        """Test enabled servers primary first."""
        config = BridgeConfig(
            mcp_server_name="main",
            mcp_servers={
                "extra": {"command": "a"},
                "off": {"command": "b", "enabled": False},
                "main": {"command": "c", "env": {"TOKEN": "x"}},
            },
        )

        names = [name for name, _ in config.enabled_servers()]
        assert names == ["main", "extra"]
        assert config.primary_server().env == {"TOKEN": "x"}
