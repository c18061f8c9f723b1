"""JSON-RPC 2.0 dispatcher for the MCP entry point."""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any

from mcp.types import INTERNAL_ERROR, INVALID_PARAMS, INVALID_REQUEST, METHOD_NOT_FOUND, PARSE_ERROR

from .constants import PROTOCOL_VERSION, SERVER_NAME, SERVER_VERSION
from .errors import RpcError, ToolArgumentError, UpstreamError
from .models import RpcRequest, ToolCallParams
from .tools import ToolRegistry

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"

# Tools whose non-2xx upstream answers get a dedicated error message.
UPSTREAM_STATUS_MESSAGES = {"fetch": "Todoist API error"}


class RpcDispatcher:
    """Route one JSON-RPC request to a response envelope.

    The dispatcher keeps no state between calls and never raises: every
    failure is returned as a JSON-RPC ``error`` object so the HTTP layer can
    always answer 200.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        server_name: str = SERVER_NAME,
        server_version: str = SERVER_VERSION,
        protocol_version: str = PROTOCOL_VERSION,
    ) -> None:
        self.registry = registry
        self.server_name = server_name
        self.server_version = server_version
        self.protocol_version = protocol_version

    async def dispatch(self, payload: Any) -> dict[str, Any]:
        correlation_id = uuid.uuid4().hex[:12]
        start = time.perf_counter()

        if not isinstance(payload, dict):
            response = error_response(None, RpcError(INVALID_REQUEST, "Invalid Request"))
            _log_rpc_call(correlation_id, None, "invalid_request", start)
            return response

        request = RpcRequest.model_validate(payload)
        if request.jsonrpc != JSONRPC_VERSION:
            response = error_response(
                request.id,
                RpcError(INVALID_REQUEST, "Invalid Request - expecting JSON-RPC 2.0"),
            )
            _log_rpc_call(correlation_id, request.method, "invalid_request", start)
            return response

        try:
            result = await self._route(request)
        except RpcError as exc:
            _log_rpc_call(
                correlation_id,
                request.method,
                "error",
                start,
                {"error_code": exc.code},
            )
            return error_response(request.id, exc)

        _log_rpc_call(correlation_id, request.method, "ok", start)
        return {"jsonrpc": JSONRPC_VERSION, "id": request.id, "result": result}

    async def _route(self, request: RpcRequest) -> dict[str, Any]:
        if request.method == "initialize":
            return {
                "protocolVersion": self.protocol_version,
                "capabilities": {"tools": {}},
                "serverInfo": {"name": self.server_name, "version": self.server_version},
            }
        if request.method == "tools/list":
            return {"tools": self.registry.all()}
        if request.method == "tools/call":
            params = ToolCallParams.model_validate(
                request.params if isinstance(request.params, dict) else {}
            )
            return await self._call_tool(params.name, params.arguments)
        raise RpcError(METHOD_NOT_FOUND, f"Method not found: {request.method}")

    async def _call_tool(self, name: Any, arguments: Any) -> Any:
        if self.registry.get(name) is None:
            raise RpcError(METHOD_NOT_FOUND, f"Method not found: {name}")

        try:
            return await self.registry.call(name, arguments)
        except ToolArgumentError as exc:
            raise RpcError(INVALID_PARAMS, exc.rpc_message) from exc
        except UpstreamError as exc:
            if exc.status_code is None:
                raise RpcError(INTERNAL_ERROR, "Internal error", exc.message) from exc
            message = UPSTREAM_STATUS_MESSAGES.get(name, "Internal error")
            raise RpcError(INTERNAL_ERROR, message, exc.body) from exc
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unhandled exception in tool '%s'", name)
            raise RpcError(INTERNAL_ERROR, "Internal error", str(exc)) from exc


def error_response(request_id: Any, error: RpcError) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error.to_payload()}


def parse_error_response() -> dict[str, Any]:
    return error_response(None, RpcError(PARSE_ERROR, "Parse error"))


def _log_rpc_call(
    correlation_id: str,
    method: Any,
    status: str,
    start: float,
    details: dict[str, Any] | None = None,
) -> None:
    payload: dict[str, Any] = {
        "event_type": "mcp_rpc_call",
        "correlation_id": correlation_id,
        "method": method if isinstance(method, str) else None,
        "status": status,
        "elapsed_ms": round((time.perf_counter() - start) * 1000, 3),
    }
    if details:
        payload["details"] = details
    logger.info("mcp_rpc_call %s", json.dumps(payload, ensure_ascii=True, sort_keys=True))
