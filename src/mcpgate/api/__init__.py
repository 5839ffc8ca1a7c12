# mcpgate HTTP layer
# Created: 2026-10-19
#
# OAuth2 endpoints are served by a path dispatcher (api.oauth2.dispatcher);
# the token management REST API lives under /api/v1/.
