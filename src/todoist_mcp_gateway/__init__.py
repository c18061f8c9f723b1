"""Todoist MCP gateway with a minimal OAuth2 authorization-code flow."""

__version__ = "1.0.0"
