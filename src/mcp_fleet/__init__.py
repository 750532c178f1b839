"""MCP Fleet - control plane for a fleet of Docker containers."""

__version__ = "0.1.0"
