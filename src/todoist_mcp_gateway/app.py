"""Starlette application exposing the OAuth, JSON-RPC, SSE and tool routes."""

from __future__ import annotations

import contextlib
import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response
from starlette.routing import Mount, Route, Router

from .auth import BearerAuthGate
from .errors import AuthError, ToolArgumentError, UpstreamError
from .models import AccessToken, AuthorizationCode
from .oauth import (
    AuthorizationCodeIssuer,
    TokenStore,
    build_discovery_document,
    build_redirect_url,
)
from .rpc import RpcDispatcher, parse_error_response
from .runtime import GatewaySettings
from .sse import SseAnnouncer
from .stores import InMemoryRecordStore
from .tools import build_tool_registry, create_task, fetch_task, search_tasks
from .upstream import TodoistClient

logger = logging.getLogger(__name__)

FlatOperation = Callable[[TodoistClient, Any], Awaitable[Any]]


async def root_status(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok", "mcp": True})


async def healthz(request: Request) -> JSONResponse:
    return JSONResponse({"ok": True})


async def rpc_entry(request: Request) -> JSONResponse:
    raw = await request.body()
    try:
        payload = json.loads(raw) if raw.strip() else None
    except ValueError:
        logger.info("Rejected malformed JSON-RPC body.")
        return JSONResponse(parse_error_response())
    dispatcher: RpcDispatcher = request.app.state.dispatcher
    return JSONResponse(await dispatcher.dispatch(payload))


async def authorization_server_metadata(request: Request) -> JSONResponse:
    settings: GatewaySettings = request.app.state.settings
    if not settings.issuer_base:
        return JSONResponse({"error": "ISSUER_BASE missing"}, status_code=500)
    return JSONResponse(build_discovery_document(settings.issuer_base))


async def authorize(request: Request) -> Response:
    """Auto-consent authorization endpoint: mint a code and redirect back."""
    params = request.query_params
    issuer: AuthorizationCodeIssuer = request.app.state.code_issuer
    try:
        code = issuer.issue(
            client_id=params.get("client_id"),
            redirect_uri=params.get("redirect_uri"),
            scope=params.get("scope"),
            response_type=params.get("response_type"),
        )
    except AuthError as exc:
        return PlainTextResponse(exc.code.value, status_code=exc.status_code)
    return RedirectResponse(
        build_redirect_url(params["redirect_uri"], code, params.get("state")),
        status_code=302,
    )


async def token(request: Request) -> JSONResponse:
    body = await _read_body(request)
    token_store: TokenStore = request.app.state.token_store
    try:
        response = token_store.exchange(
            grant_type=_as_text(body.get("grant_type")),
            code=_as_text(body.get("code")),
            redirect_uri=_as_text(body.get("redirect_uri")),
        )
    except AuthError as exc:
        logger.info("Token exchange rejected: %s.", exc)
        return JSONResponse(exc.to_payload(), status_code=exc.status_code)
    return JSONResponse(response.model_dump())


async def tools_search(request: Request) -> JSONResponse:
    return await _run_flat_tool(request, search_tasks, lambda results: {"results": results})


async def tools_fetch(request: Request) -> JSONResponse:
    return await _run_flat_tool(request, fetch_task, lambda document: {"result": document})


async def mcp_search(request: Request) -> JSONResponse:
    return await _run_flat_tool(request, search_tasks)


async def mcp_fetch(request: Request) -> JSONResponse:
    return await _run_flat_tool(request, fetch_task)


async def mcp_create(request: Request) -> JSONResponse:
    return await _run_flat_tool(request, create_task)


async def _run_flat_tool(
    request: Request,
    operation: FlatOperation,
    wrap: Callable[[Any], Any] | None = None,
) -> JSONResponse:
    arguments = await _read_body(request)
    client: TodoistClient = request.app.state.todoist
    try:
        result = await operation(client, arguments)
    except ToolArgumentError as exc:
        return JSONResponse({"error": exc.flat_code}, status_code=400)
    except UpstreamError as exc:
        if exc.status_code is not None:
            return JSONResponse(exc.body, status_code=exc.status_code)
        return JSONResponse({"error": exc.message}, status_code=500)
    return JSONResponse(wrap(result) if wrap else result)


async def _read_body(request: Request) -> dict[str, Any]:
    """Read a JSON or form-encoded body; anything else is treated as empty."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        form = await request.form()
        return dict(form)

    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def create_app(
    settings: GatewaySettings | None = None,
    *,
    todoist: TodoistClient | None = None,
    now_fn: Callable[[], float] | None = None,
    sse_sleep: Callable[[float], Awaitable[Any]] | None = None,
) -> Starlette:
    """Wire stores, dispatcher and routes into one ASGI application."""
    settings = settings or GatewaySettings()
    todoist = todoist or TodoistClient(
        token=settings.todoist_token,
        base_url=settings.todoist_api_base,
        timeout_seconds=settings.todoist_timeout_seconds,
    )

    codes: InMemoryRecordStore[AuthorizationCode] = InMemoryRecordStore("authorization_code")
    tokens: InMemoryRecordStore[AccessToken] = InMemoryRecordStore("access_token")
    code_issuer = AuthorizationCodeIssuer(codes, now_fn=now_fn)
    token_store = TokenStore(codes, tokens, now_fn=now_fn)
    registry = build_tool_registry(todoist)
    announcer = SseAnnouncer(registry, sleep=sse_sleep)

    protected = BearerAuthGate(
        Router(
            routes=[
                Route("/search", mcp_search, methods=["POST"]),
                Route("/fetch", mcp_fetch, methods=["POST"]),
                Route("/create", mcp_create, methods=["POST"]),
            ]
        ),
        token_store=token_store,
        shared_secret=settings.shared_secret,
    )

    routes = [
        Route("/", root_status, methods=["GET"]),
        Route("/", rpc_entry, methods=["POST"]),
        Route("/.well-known/oauth-authorization-server", authorization_server_metadata, methods=["GET"]),
        Route("/oauth/authorize", authorize, methods=["GET"]),
        Route("/oauth/token", token, methods=["POST"]),
        Route("/healthz", healthz, methods=["GET"]),
        Route("/sse", announcer.endpoint, methods=["GET", "POST"]),
        Route("/sse/", announcer.endpoint, methods=["GET", "POST"]),
        Route("/tools/search", tools_search, methods=["POST"]),
        Route("/tools/fetch", tools_fetch, methods=["POST"]),
        Mount("/mcp", app=protected),
    ]

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        if not settings.todoist_token:
            logger.warning("TODOIST_TOKEN is not set; upstream calls will be rejected.")
        if not settings.issuer_base:
            logger.warning("ISSUER_BASE is not set; OAuth discovery will answer 500.")
        logger.info("Todoist MCP + OAuth gateway ready.")
        yield
        if announcer.open_connections:
            logger.info("Shutting down with %d open SSE connections.", announcer.open_connections)

    app = Starlette(routes=routes, lifespan=lifespan)
    app.state.settings = settings
    app.state.todoist = todoist
    app.state.code_issuer = code_issuer
    app.state.token_store = token_store
    app.state.registry = registry
    app.state.dispatcher = RpcDispatcher(registry)
    app.state.announcer = announcer
    return app
