"""mcpilot: bidirectional Model Context Protocol engine for coding assistants."""

__version__ = "0.3.0"
