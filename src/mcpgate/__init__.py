"""mcpgate: OAuth 2.0 gateway for Model Context Protocol endpoints."""

__version__ = "0.1.0"
