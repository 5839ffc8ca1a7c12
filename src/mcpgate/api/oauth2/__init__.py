# OAuth2 authorization server for MCP clients.
# Created: 2026-10-19
