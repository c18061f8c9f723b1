"""Thin async adapter over the Todoist REST API."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from .constants import TODOIST_API_BASE
from .errors import UpstreamError

logger = logging.getLogger(__name__)


class TodoistClient:
    """Perform list/get/create task calls with the gateway's Todoist credential.

    A fresh ``httpx.AsyncClient`` is opened per call so no connection state is
    shared between requests. Non-2xx answers and transport failures are raised
    as ``UpstreamError``.
    """

    def __init__(
        self,
        token: str,
        base_url: str = TODOIST_API_BASE,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    async def list_tasks(self) -> list[dict[str, Any]]:
        payload = await self._request("GET", "/tasks")
        if not isinstance(payload, list):
            return []
        return [task for task in payload if isinstance(task, dict)]

    async def get_task(self, task_id: str) -> dict[str, Any]:
        payload = await self._request("GET", f"/tasks/{quote(str(task_id), safe='')}")
        if not isinstance(payload, dict):
            raise UpstreamError("Unexpected task payload from Todoist.")
        return payload

    async def create_task(
        self,
        content: str,
        description: str | None = None,
        due_string: str | None = None,
        project_id: str | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"content": content}
        if description is not None:
            body["description"] = description
        if due_string:
            body["due_string"] = due_string
        if project_id:
            body["project_id"] = project_id
        payload = await self._request("POST", "/tasks", json=body)
        if not isinstance(payload, dict):
            raise UpstreamError("Unexpected task payload from Todoist.")
        return payload

    async def _request(self, method: str, path: str, json: Any = None) -> Any:
        headers = {"Authorization": f"Bearer {self._token}"}
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, headers=headers, json=json)
        except httpx.HTTPError as exc:
            logger.warning("Todoist %s %s failed: %s", method, path, exc)
            raise UpstreamError(str(exc) or exc.__class__.__name__) from exc

        if not response.is_success:
            logger.warning("Todoist %s %s returned HTTP %s.", method, path, response.status_code)
            raise UpstreamError(
                f"Todoist returned HTTP {response.status_code}.",
                status_code=response.status_code,
                body=_decode_body(response),
            )

        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError("Todoist returned a non-JSON response.") from exc


def _decode_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text
