"""
MCP Bridge validation module.

This module provides configuration validation and schema enforcement.
"""

from mcpbridge.validation.config import BridgeConfig, Config, ConfigError, ServerParameters

__all__ = ["BridgeConfig", "Config", "ConfigError", "ServerParameters"]
