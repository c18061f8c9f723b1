"""Project-wide constants for the Todoist MCP gateway."""

SERVER_NAME = "todoist-mcp"
SERVER_VERSION = "1.0.0"
PROTOCOL_VERSION = "2025-03-26"

AUTHORIZATION_CODE_TTL_SECONDS = 300
ACCESS_TOKEN_TTL_SECONDS = 3600
AUTHORIZATION_CODE_BYTES = 24
ACCESS_TOKEN_BYTES = 32

SSE_KEEPALIVE_SECONDS = 15.0

SHARED_SECRET_HEADER = "x-mcp-secret"

TODOIST_API_BASE = "https://api.todoist.com/rest/v2"
TODOIST_TASK_URL = "https://todoist.com/showTask?id={task_id}"
