"""Authorization-code issuance, code exchange and bearer token validation."""

from __future__ import annotations

import logging
import secrets
import time
from typing import Any, Callable
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from .constants import (
    ACCESS_TOKEN_BYTES,
    ACCESS_TOKEN_TTL_SECONDS,
    AUTHORIZATION_CODE_BYTES,
    AUTHORIZATION_CODE_TTL_SECONDS,
)
from .errors import AuthError, ErrorCode
from .models import AccessToken, AuthorizationCode, TokenResponse
from .stores import InMemoryRecordStore, RecordStore

logger = logging.getLogger(__name__)


def _epoch_seconds(now_fn: Callable[[], float]) -> int:
    return int(now_fn())


def _mint_unique(store: RecordStore[Any], nbytes: int) -> str:
    while True:
        candidate = secrets.token_hex(nbytes)
        if candidate not in store:
            return candidate


class AuthorizationCodeIssuer:
    """Mint short-lived one-time codes for the auto-consent authorize endpoint."""

    def __init__(
        self,
        store: RecordStore[AuthorizationCode] | None = None,
        now_fn: Callable[[], float] | None = None,
        ttl_seconds: int = AUTHORIZATION_CODE_TTL_SECONDS,
    ) -> None:
        self.store = store if store is not None else InMemoryRecordStore("authorization_code")
        self._now_fn = now_fn or time.time
        self.ttl_seconds = ttl_seconds

    def issue(
        self,
        client_id: str | None,
        redirect_uri: str | None,
        scope: str | None = None,
        response_type: str | None = None,
    ) -> str:
        """Store a new code bound to ``client_id``/``redirect_uri`` and return it."""
        if response_type != "code" or not client_id or not redirect_uri:
            raise AuthError(ErrorCode.INVALID_REQUEST)
        if not _is_absolute_url(redirect_uri):
            raise AuthError(ErrorCode.INVALID_REQUEST, description="redirect_uri must be absolute")

        code = _mint_unique(self.store, AUTHORIZATION_CODE_BYTES)
        self.store.put(
            code,
            AuthorizationCode(
                code=code,
                client_id=client_id,
                redirect_uri=redirect_uri,
                scope=scope or "",
                expires_at=_epoch_seconds(self._now_fn) + self.ttl_seconds,
            ),
        )
        logger.info("Authorization code issued for client_id=%s.", client_id)
        return code


class TokenStore:
    """Exchange authorization codes for bearer tokens and validate them."""

    def __init__(
        self,
        codes: RecordStore[AuthorizationCode],
        tokens: RecordStore[AccessToken] | None = None,
        now_fn: Callable[[], float] | None = None,
        ttl_seconds: int = ACCESS_TOKEN_TTL_SECONDS,
    ) -> None:
        self.codes = codes
        self.tokens = tokens if tokens is not None else InMemoryRecordStore("access_token")
        self._now_fn = now_fn or time.time
        self.ttl_seconds = ttl_seconds

    def exchange(
        self,
        grant_type: str | None,
        code: str | None,
        redirect_uri: str | None = None,
    ) -> TokenResponse:
        if grant_type != "authorization_code" or not code:
            raise AuthError(ErrorCode.UNSUPPORTED_GRANT_TYPE)

        record = self.codes.get(code)
        if record is None:
            raise AuthError(ErrorCode.INVALID_GRANT)

        now = _epoch_seconds(self._now_fn)
        if record.expires_at < now:
            self.codes.expire(code)
            raise AuthError(ErrorCode.EXPIRED_CODE)

        # The code survives a mismatch, so a retry with the bound URI still succeeds.
        if redirect_uri and redirect_uri != record.redirect_uri:
            raise AuthError(ErrorCode.REDIRECT_URI_MISMATCH)

        if self.codes.delete(code) is None:
            # Lost a race with a concurrent exchange of the same code.
            raise AuthError(ErrorCode.INVALID_GRANT)

        access_token = _mint_unique(self.tokens, ACCESS_TOKEN_BYTES)
        self.tokens.put(
            access_token,
            AccessToken(
                token=access_token,
                scope=record.scope,
                expires_at=now + self.ttl_seconds,
            ),
        )
        logger.info("Access token issued for client_id=%s.", record.client_id)
        return TokenResponse(
            access_token=access_token,
            expires_in=self.ttl_seconds,
            scope=record.scope,
        )

    def validate(self, token: str) -> AccessToken:
        """Return the live token record or raise ``invalid_token``/``expired_token``."""
        record = self.tokens.get(token)
        if record is None:
            raise AuthError(ErrorCode.INVALID_TOKEN, status_code=401)
        if record.expires_at < _epoch_seconds(self._now_fn):
            self.tokens.expire(token)
            raise AuthError(ErrorCode.EXPIRED_TOKEN, status_code=401)
        return record


def build_discovery_document(issuer: str) -> dict[str, Any]:
    """OAuth 2.0 Authorization Server Metadata for ``issuer``."""
    return {
        "issuer": issuer,
        "authorization_endpoint": f"{issuer}/oauth/authorize",
        "token_endpoint": f"{issuer}/oauth/token",
        "response_types_supported": ["code"],
        "grant_types_supported": ["authorization_code"],
        "token_endpoint_auth_methods_supported": ["none", "client_secret_post"],
        "code_challenge_methods_supported": ["plain"],
    }


def build_redirect_url(redirect_uri: str, code: str, state: str | None = None) -> str:
    """Append ``code`` (and ``state``) to ``redirect_uri``, replacing same-named params."""
    parsed = urlparse(redirect_uri)
    appended = {"code": code}
    if state:
        appended["state"] = state
    query = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if key not in appended
    ]
    query.extend(appended.items())
    return urlunparse(parsed._replace(query=urlencode(query)))


def _is_absolute_url(value: str) -> bool:
    parsed = urlparse(value)
    return bool(parsed.scheme and parsed.netloc)
