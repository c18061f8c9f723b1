"""Error types shared by the OAuth, RPC and tool layers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from mcp.types import ErrorData


class ErrorCode(str, Enum):
    """Error codes returned by the OAuth endpoints and the bearer gate."""

    INVALID_REQUEST = "invalid_request"
    UNSUPPORTED_GRANT_TYPE = "unsupported_grant_type"
    INVALID_GRANT = "invalid_grant"
    EXPIRED_CODE = "expired_code"
    REDIRECT_URI_MISMATCH = "redirect_uri_mismatch"
    MISSING_TOKEN = "missing_token"
    INVALID_TOKEN = "invalid_token"
    EXPIRED_TOKEN = "expired_token"
    UNAUTHORIZED = "unauthorized"


@dataclass
class AuthError(Exception):
    """Authorization failure surfaced as an HTTP 400/401 response."""

    code: ErrorCode
    status_code: int = 400
    description: str | None = None

    def __str__(self) -> str:
        return self.code.value

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.code.value}
        if self.description:
            payload["error_description"] = self.description
        return payload


@dataclass
class ToolArgumentError(Exception):
    """A required tool argument is missing or empty."""

    argument: str

    def __str__(self) -> str:
        return self.rpc_message

    @property
    def rpc_message(self) -> str:
        return f"Invalid params: {self.argument} is required"

    @property
    def flat_code(self) -> str:
        return f"{self.argument}_required"


@dataclass
class UpstreamError(Exception):
    """Todoist could not be reached or answered with a non-2xx status.

    ``status_code`` is ``None`` for transport and decoding failures; otherwise
    it carries the upstream status and ``body`` the decoded error payload.
    """

    message: str
    status_code: int | None = None
    body: Any = None

    def __str__(self) -> str:
        return self.message


@dataclass
class RpcError(Exception):
    """JSON-RPC error object produced by the dispatcher."""

    code: int
    message: str
    data: Any = None

    def __str__(self) -> str:
        return self.message

    def to_error_data(self) -> ErrorData:
        return ErrorData(code=self.code, message=self.message, data=self.data)

    def to_payload(self) -> dict[str, Any]:
        return self.to_error_data().model_dump(exclude_none=True)
