"""Shared fixtures."""

import sys
from pathlib import Path

import pytest

from mcpbridge.validation.config import ServerParameters

FAKE_SERVER = Path(__file__).parent / "fake_mcp_server.py"


def fake_server_params(*extra_args: str) -> ServerParameters:
    return ServerParameters(command=sys.executable, args=["-u", str(FAKE_SERVER), *extra_args])


@pytest.fixture
def server_params():
    """Parameters that launch the fake MCP server."""
    return fake_server_params()


@pytest.fixture
def versionless_server_params():
    """Parameters for a fake server whose handshake reply lacks protocolVersion."""
    return fake_server_params("--no-version")


@pytest.fixture
def make_server_params():
    """Factory for fake server parameters with extra command-line flags."""
    return fake_server_params
