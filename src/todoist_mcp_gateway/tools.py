"""Tool catalog and the search/fetch handlers behind it."""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

from mcp.types import Tool
from pydantic import BaseModel, ValidationError

from .constants import TODOIST_TASK_URL
from .errors import ToolArgumentError, UpstreamError
from .models import CreateTaskArguments, FetchArguments, SearchArguments
from .upstream import TodoistClient

logger = logging.getLogger(__name__)

ToolHandler = Callable[[Any], Awaitable[Any]]

SEARCH_TOOL = Tool(
    name="search",
    description="Search Todoist tasks",
    inputSchema={
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "Text to look for in task content",
            }
        },
        "required": ["query"],
    },
)

FETCH_TOOL = Tool(
    name="fetch",
    description="Fetch a Todoist task by ID",
    inputSchema={
        "type": "object",
        "properties": {
            "id": {
                "type": "string",
                "description": "ID of the task to fetch",
            }
        },
        "required": ["id"],
    },
)


@dataclass(frozen=True)
class RegisteredTool:
    tool: Tool
    handler: ToolHandler


class ToolRegistry:
    """Static, ordered catalog of callable tools."""

    def __init__(self) -> None:
        self._tools: dict[str, RegisteredTool] = {}

    def register(self, tool: Tool, handler: ToolHandler) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered.")
        self._tools[tool.name] = RegisteredTool(tool=tool, handler=handler)

    def get(self, name: Any) -> RegisteredTool | None:
        if not isinstance(name, str):
            return None
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def all(self) -> list[dict[str, Any]]:
        """Descriptors in the MCP ``tools/list`` shape."""
        return [
            entry.tool.model_dump(mode="json", exclude_none=True, by_alias=True)
            for entry in self._tools.values()
        ]

    def announcements(self) -> list[dict[str, Any]]:
        """Descriptors in the shape announced over the SSE channel."""
        return [
            {
                "name": entry.tool.name,
                "description": entry.tool.description,
                "parameters": _strip_property_descriptions(_input_schema(entry.tool)),
            }
            for entry in self._tools.values()
        ]

    async def call(self, name: str, arguments: Any) -> Any:
        entry = self._tools[name]
        correlation_id = uuid.uuid4().hex[:12]
        start = time.perf_counter()
        try:
            result = await entry.handler(arguments)
        except ToolArgumentError:
            _log_tool_call(correlation_id, name, "invalid_params", start)
            raise
        except UpstreamError as exc:
            _log_tool_call(
                correlation_id,
                name,
                "upstream_error",
                start,
                {"upstream_status": exc.status_code},
            )
            raise
        _log_tool_call(correlation_id, name, "ok", start)
        return result


def task_url(task_id: Any) -> str:
    return TODOIST_TASK_URL.format(task_id=task_id)


def task_document(task: Mapping[str, Any], include_metadata: bool = False) -> dict[str, Any]:
    """Shape a Todoist task into the ``{id, title, text, url}`` result document."""
    document: dict[str, Any] = {
        "id": str(task.get("id")),
        "title": task.get("content"),
        "text": task.get("description") or "",
        "url": task_url(task.get("id")),
    }
    if include_metadata:
        document["metadata"] = {
            "project_id": task.get("project_id"),
            "due": task.get("due"),
        }
    return document


async def search_tasks(client: TodoistClient, arguments: Any) -> list[dict[str, Any]]:
    """Case-insensitive substring match of ``query`` against task content."""
    request = _parse_arguments(SearchArguments, arguments, "query")
    if request.query is None:
        raise ToolArgumentError("query")

    needle = request.query.lower()
    tasks = await client.list_tasks()
    return [
        task_document(task)
        for task in tasks
        if needle in str(task.get("content") or "").lower()
    ]


async def fetch_task(client: TodoistClient, arguments: Any) -> dict[str, Any]:
    request = _parse_arguments(FetchArguments, arguments, "id")
    if request.id is None:
        raise ToolArgumentError("id")
    task = await client.get_task(request.id)
    return task_document(task, include_metadata=True)


async def create_task(client: TodoistClient, arguments: Any) -> dict[str, Any]:
    request = _parse_arguments(CreateTaskArguments, arguments, "content")
    if request.content is None:
        raise ToolArgumentError("content")
    task = await client.create_task(
        content=request.content,
        description=request.description,
        due_string=request.due_string,
        project_id=request.project_id,
    )
    return task_document(task, include_metadata=True)


def build_tool_registry(client: TodoistClient) -> ToolRegistry:
    registry = ToolRegistry()

    async def _search(arguments: Any) -> dict[str, Any]:
        return {"content": await search_tasks(client, arguments)}

    async def _fetch(arguments: Any) -> dict[str, Any]:
        return {"content": await fetch_task(client, arguments)}

    registry.register(SEARCH_TOOL, _search)
    registry.register(FETCH_TOOL, _fetch)
    return registry


def _parse_arguments(model: type[BaseModel], arguments: Any, required: str) -> Any:
    if not isinstance(arguments, Mapping):
        raise ToolArgumentError(required)
    try:
        return model.model_validate(dict(arguments))
    except ValidationError as exc:
        first_error = exc.errors()[0] if exc.errors() else {}
        location = first_error.get("loc") or (required,)
        raise ToolArgumentError(str(location[0])) from exc


def _input_schema(tool: Tool) -> dict[str, Any]:
    # Read through the wire alias; the attribute name differs across mcp releases.
    return tool.model_dump(mode="json", by_alias=True)["inputSchema"]


def _strip_property_descriptions(schema: Mapping[str, Any]) -> dict[str, Any]:
    stripped = dict(schema)
    properties = schema.get("properties")
    if isinstance(properties, Mapping):
        stripped["properties"] = {
            name: {key: value for key, value in field_schema.items() if key != "description"}
            for name, field_schema in properties.items()
        }
    return stripped


def _log_tool_call(
    correlation_id: str,
    tool_name: str,
    status: str,
    start: float,
    details: dict[str, Any] | None = None,
) -> None:
    payload: dict[str, Any] = {
        "event_type": "mcp_tool_call",
        "correlation_id": correlation_id,
        "tool_name": tool_name,
        "status": status,
        "elapsed_ms": round((time.perf_counter() - start) * 1000, 3),
    }
    if details:
        payload["details"] = details
    logger.info("mcp_tool_call %s", json.dumps(payload, ensure_ascii=True, sort_keys=True))
