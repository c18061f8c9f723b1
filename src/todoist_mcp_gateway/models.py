"""Pydantic models for OAuth records, JSON-RPC envelopes and tool inputs."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from .constants import ACCESS_TOKEN_TTL_SECONDS


class AuthorizationCode(BaseModel):
    """One-time code bound to the client and redirect URI it was issued for."""

    model_config = ConfigDict(frozen=True)

    code: str
    client_id: str
    redirect_uri: str
    scope: str = ""
    expires_at: int


class AccessToken(BaseModel):
    """Bearer token minted by a successful code exchange."""

    model_config = ConfigDict(frozen=True)

    token: str
    scope: str = ""
    expires_at: int


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int = ACCESS_TOKEN_TTL_SECONDS
    scope: str = ""


class RpcRequest(BaseModel):
    """Inbound JSON-RPC envelope; validation of ``jsonrpc`` happens in the dispatcher."""

    jsonrpc: Any = None
    id: Any = None
    method: Any = None
    params: Any = None


class ToolCallParams(BaseModel):
    name: Any = None
    arguments: Any = None


def _blank_to_none(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str) and not value:
        return None
    return value


class SearchArguments(BaseModel):
    query: str | None = None

    @field_validator("query", mode="before")
    @classmethod
    def _normalize_query(cls, value: Any) -> Any:
        return _blank_to_none(value)


class FetchArguments(BaseModel):
    id: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> Any:
        return _blank_to_none(value)


class CreateTaskArguments(BaseModel):
    content: str | None = None
    description: str | None = None
    due_string: str | None = None
    project_id: str | None = None

    @field_validator("content", "due_string", "project_id", mode="before")
    @classmethod
    def _normalize_optional_text(cls, value: Any) -> Any:
        return _blank_to_none(value)

