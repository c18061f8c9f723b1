from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from todoist_mcp_gateway.upstream import TodoistClient

API_BASE = "https://api.todoist.test/rest/v2"
EPOCH = 1_700_000_000.0


class FakeClock:
    def __init__(self, start: float = EPOCH) -> None:
        self.current = start

    def now(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


class FakeTodoist:
    """Minimal in-memory stand-in for the Todoist REST endpoints."""

    def __init__(self) -> None:
        self.tasks: list[dict[str, Any]] = [
            {"id": 1, "content": "buy milk"},
            {"id": 2, "content": "walk dog"},
        ]
        self.requests: list[httpx.Request] = []
        self.failure: Exception | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.failure is not None:
            raise self.failure

        path = request.url.path.removeprefix("/rest/v2")
        if request.method == "GET" and path == "/tasks":
            return httpx.Response(200, json=self.tasks)
        if request.method == "GET" and path.startswith("/tasks/"):
            task_id = path.rsplit("/", 1)[-1]
            for task in self.tasks:
                if str(task["id"]) == task_id:
                    return httpx.Response(200, json=task)
            return httpx.Response(404, json={"error": "Task not found"})
        if request.method == "POST" and path == "/tasks":
            created = {"id": 99, "project_id": "p1", "due": None, **_json_body(request)}
            self.tasks.append(created)
            return httpx.Response(200, json=created)
        return httpx.Response(405, text="method not allowed")

    def client(self) -> TodoistClient:
        return TodoistClient(
            token="test-token",
            base_url=API_BASE,
            transport=httpx.MockTransport(self.handler),
        )


def _json_body(request: httpx.Request) -> dict[str, Any]:
    return json.loads(request.content.decode("utf-8"))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_todoist() -> FakeTodoist:
    return FakeTodoist()


@pytest.fixture
def todoist(fake_todoist: FakeTodoist) -> TodoistClient:
    return fake_todoist.client()

