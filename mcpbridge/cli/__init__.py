"""MCP Bridge command line interface."""
