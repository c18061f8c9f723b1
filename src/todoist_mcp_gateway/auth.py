"""Bearer-token gate for the protected MCP routes."""

from __future__ import annotations

import hmac
import logging

from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from .constants import SHARED_SECRET_HEADER
from .errors import AuthError, ErrorCode
from .oauth import TokenStore

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


class BearerAuthGate:
    """Require a live bearer token, and the shared secret when one is configured."""

    def __init__(
        self,
        app: ASGIApp,
        token_store: TokenStore,
        shared_secret: str | None = None,
    ) -> None:
        self._app = app
        self._token_store = token_store
        self._shared_secret = shared_secret or ""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self._app(scope, receive, send)
            return

        try:
            self.check(_header_values(scope))
        except AuthError as exc:
            logger.info("Rejected %s %s: %s.", scope.get("method"), scope.get("path"), exc)
            response = JSONResponse(exc.to_payload(), status_code=exc.status_code)
            await response(scope, receive, send)
            return

        await self._app(scope, receive, send)

    def check(self, headers: dict[str, str]) -> None:
        authorization = headers.get("authorization", "")
        if not authorization.startswith(BEARER_PREFIX):
            raise AuthError(ErrorCode.MISSING_TOKEN, status_code=401)

        self._token_store.validate(authorization[len(BEARER_PREFIX):])

        if self._shared_secret:
            # latin-1 round-trips the raw header bytes; the secret is sent as UTF-8.
            provided = headers.get(SHARED_SECRET_HEADER, "")
            if not hmac.compare_digest(provided.encode("latin-1"), self._shared_secret.encode("utf-8")):
                raise AuthError(ErrorCode.UNAUTHORIZED, status_code=401)


def _header_values(scope: Scope) -> dict[str, str]:
    values: dict[str, str] = {}
    for key, value in scope.get("headers", []):
        name = key.decode("latin-1").lower()
        values.setdefault(name, value.decode("latin-1"))
    return values
