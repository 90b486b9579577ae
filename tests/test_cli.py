"""Tests for the command-line interface."""

import logging

import httpx
import pytest
import yaml
from click.testing import CliRunner

from mcpbridge.cli.main import cli
from mcpbridge.validation.config import Config


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def config_file(tmp_path, server_params):
    path = tmp_path / "bridge.yaml"
    path.write_text(yaml.dump({
        "llm": {"provider": "ollama", "model": "llama3.1"},
        "mcp_servers": {"primary": {"command": server_params.command, "args": server_params.args}},
        "logging": {"level": "WARNING"},
    }))
    return path


def test_help():
    """Test that every command is listed in the help."""
    result = CliRunner().invoke(cli, ["--help"])
    assert result.exit_code == 0
    for command in ("chat", "ask", "tools", "init"):
        assert command in result.output


def test_init(tmp_path, monkeypatch):
    """Test writing the default configuration from the CLI."""
    monkeypatch.setattr(Config, "GLOBAL_CONFIG_DIR", tmp_path / "home")
    result = CliRunner().invoke(cli, ["init"], obj={})

    assert result.exit_code == 0
    assert (tmp_path / "home" / "config.yaml").exists()


def test_tools_lists_server_tools(config_file):
    """Test tools lists server tools."""
    result = CliRunner().invoke(cli, ["--config", str(config_file), "tools"], obj={})

    assert result.exit_code == 0, result.output
    assert "echo" in result.output
    assert "primary" in result.output


def test_unreachable_server_exits_with_error(tmp_path):
    """Test unreachable server exits with error."""
    path = tmp_path / "bridge.yaml"
    path.write_text(yaml.dump({"mcp_servers": {"primary": {"command": "no-such-mcp-server-command"}}}))

    result = CliRunner().invoke(cli, ["--config", str(path), "tools"], obj={})
    assert result.exit_code == 1


def test_invalid_config_exits_with_error(tmp_path):
    """Test invalid config exits with error."""
    path = tmp_path / "bridge.yaml"
    path.write_text(yaml.dump({"bridge": {"max_iterations": 0}}))

    result = CliRunner().invoke(cli, ["--config", str(path), "tools"], obj={})
    assert result.exit_code == 1
    assert "Configuration error" in result.output


def _fake_tags(status):
    def fake_get(url, **kwargs):
        if status is None:
            raise httpx.ConnectError("connection refused")
        return httpx.Response(status, request=httpx.Request("GET", url))
    return fake_get


def test_chat_warns_when_model_unreachable(config_file, monkeypatch):
    """Test that chat reports an unreachable model endpoint before the REPL starts."""
    monkeypatch.setattr(httpx, "get", _fake_tags(None))
    result = CliRunner().invoke(cli, ["--config", str(config_file), "chat"], input="", obj={})

    assert result.exit_code == 0, result.output
    assert "not reachable" in result.output
    assert "Goodbye" in result.output


def test_chat_without_warning_when_model_reachable(config_file, monkeypatch):
    """Test that a reachable model endpoint produces no warning."""
    monkeypatch.setattr(httpx, "get", _fake_tags(200))
    result = CliRunner().invoke(cli, ["--config", str(config_file), "chat"], input="", obj={})

    assert result.exit_code == 0, result.output
    assert "not reachable" not in result.output
