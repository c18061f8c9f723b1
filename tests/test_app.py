from __future__ import annotations

import re
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from starlette.testclient import TestClient

from todoist_mcp_gateway.app import create_app
from todoist_mcp_gateway.runtime import GatewaySettings

REDIRECT_URI = "https://cb.example/cb"


def _settings(**overrides) -> GatewaySettings:
    values = {
        "todoist_token": "test-token",
        "issuer_base": "https://gw.example",
        "todoist_api_base": "https://api.todoist.test/rest/v2",
    }
    values.update(overrides)
    return GatewaySettings(**values)


@pytest.fixture
def client(todoist, clock):
    with TestClient(create_app(_settings(), todoist=todoist, now_fn=clock.now)) as test_client:
        yield test_client


def _authorize(client: TestClient, **params) -> httpx.Response:
    query = {"response_type": "code", "client_id": "c1", "redirect_uri": REDIRECT_URI}
    query.update(params)
    return client.get("/oauth/authorize", params=query, follow_redirects=False)


def _access_token(client: TestClient) -> str:
    location = _authorize(client).headers["location"]
    code = parse_qs(urlparse(location).query)["code"][0]
    response = client.post(
        "/oauth/token",
        data={"grant_type": "authorization_code", "code": code, "redirect_uri": REDIRECT_URI},
    )
    assert response.status_code == 200
    return response.json()["access_token"]


def test_root_and_health(client) -> None:
    assert client.get("/").json() == {"status": "ok", "mcp": True}
    assert client.get("/healthz").json() == {"ok": True}


def test_discovery_document(client) -> None:
    response = client.get("/.well-known/oauth-authorization-server")

    assert response.status_code == 200
    payload = response.json()
    assert payload["issuer"] == "https://gw.example"
    assert payload["authorization_endpoint"] == "https://gw.example/oauth/authorize"
    assert payload["token_endpoint"] == "https://gw.example/oauth/token"
    assert payload["code_challenge_methods_supported"] == ["plain"]


def test_discovery_without_issuer_is_server_error(todoist) -> None:
    app = create_app(_settings(issuer_base=""), todoist=todoist)
    response = TestClient(app).get("/.well-known/oauth-authorization-server")

    assert response.status_code == 500
    assert response.json() == {"error": "ISSUER_BASE missing"}


def test_authorize_redirects_with_code_and_state(client) -> None:
    response = _authorize(client, state="s1")

    assert response.status_code == 302
    assert re.fullmatch(
        r"https://cb\.example/cb\?code=[0-9a-f]{48}&state=s1",
        response.headers["location"],
    )


@pytest.mark.parametrize(
    "params",
    [{"response_type": "token"}, {"client_id": ""}, {"redirect_uri": ""}],
)
def test_authorize_rejects_invalid_request(client, params) -> None:
    response = _authorize(client, **params)

    assert response.status_code == 400
    assert response.text == "invalid_request"


def test_token_exchange_rejects_unknown_code(client) -> None:
    response = client.post(
        "/oauth/token",
        json={"grant_type": "authorization_code", "code": "nonexistent"},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "invalid_grant"}


def test_token_exchange_rejects_bad_grant_and_empty_body(client) -> None:
    bad_grant = client.post("/oauth/token", data={"grant_type": "password", "code": "x"})
    empty = client.post("/oauth/token")

    assert bad_grant.status_code == 400
    assert bad_grant.json() == {"error": "unsupported_grant_type"}
    assert empty.json() == {"error": "unsupported_grant_type"}


def test_token_exchange_with_json_body(client) -> None:
    location = _authorize(client, scope="tasks").headers["location"]
    code = parse_qs(urlparse(location).query)["code"][0]

    response = client.post(
        "/oauth/token",
        json={"grant_type": "authorization_code", "code": code},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["token_type"] == "Bearer"
    assert payload["expires_in"] == 3600
    assert payload["scope"] == "tasks"

    replay = client.post("/oauth/token", json={"grant_type": "authorization_code", "code": code})
    assert replay.json() == {"error": "invalid_grant"}


def test_token_exchange_redirect_mismatch(client) -> None:
    location = _authorize(client).headers["location"]
    code = parse_qs(urlparse(location).query)["code"][0]

    response = client.post(
        "/oauth/token",
        data={"grant_type": "authorization_code", "code": code, "redirect_uri": "https://other.example"},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "redirect_uri_mismatch"}


def test_expired_code_over_http(client, clock) -> None:
    location = _authorize(client).headers["location"]
    code = parse_qs(urlparse(location).query)["code"][0]
    clock.advance(301)

    response = client.post("/oauth/token", data={"grant_type": "authorization_code", "code": code})

    assert response.status_code == 400
    assert response.json() == {"error": "expired_code"}


def test_protected_route_requires_token(client) -> None:
    response = client.post("/mcp/search", json={"query": "milk"})

    assert response.status_code == 401
    assert response.json() == {"error": "missing_token"}


def test_full_oauth_flow_reaches_protected_tools(client) -> None:
    headers = {"Authorization": f"Bearer {_access_token(client)}"}

    search = client.post("/mcp/search", json={"query": "DOG"}, headers=headers)
    assert search.status_code == 200
    assert search.json() == [
        {"id": "2", "title": "walk dog", "text": "", "url": "https://todoist.com/showTask?id=2"}
    ]

    fetch = client.post("/mcp/fetch", json={"id": "1"}, headers=headers)
    assert fetch.status_code == 200
    assert fetch.json()["title"] == "buy milk"
    assert fetch.json()["metadata"] == {"project_id": None, "due": None}

    missing = client.post("/mcp/fetch", json={}, headers=headers)
    assert missing.status_code == 400
    assert missing.json() == {"error": "id_required"}


def test_protected_create_route(client, fake_todoist) -> None:
    headers = {"Authorization": f"Bearer {_access_token(client)}"}

    created = client.post("/mcp/create", json={"content": "water plants"}, headers=headers)
    assert created.status_code == 200
    assert created.json()["id"] == "99"
    assert fake_todoist.tasks[-1]["content"] == "water plants"

    missing = client.post("/mcp/create", json={}, headers=headers)
    assert missing.status_code == 400
    assert missing.json() == {"error": "content_required"}


def test_protected_route_rejects_expired_token(client, clock) -> None:
    headers = {"Authorization": f"Bearer {_access_token(client)}"}
    clock.advance(3601)

    response = client.post("/mcp/search", json={"query": "milk"}, headers=headers)

    assert response.status_code == 401
    assert response.json() == {"error": "expired_token"}


def test_protected_route_requires_shared_secret_when_configured(todoist, clock) -> None:
    app = create_app(_settings(shared_secret="s3cret"), todoist=todoist, now_fn=clock.now)
    with TestClient(app) as client:
        headers = {"Authorization": f"Bearer {_access_token(client)}"}

        denied = client.post("/mcp/search", json={"query": "milk"}, headers=headers)
        allowed = client.post(
            "/mcp/search",
            json={"query": "milk"},
            headers={**headers, "x-mcp-secret": "s3cret"},
        )

    assert denied.status_code == 401
    assert denied.json() == {"error": "unauthorized"}
    assert allowed.status_code == 200


def test_flat_tool_routes_are_open(client) -> None:
    search = client.post("/tools/search", json={"query": "milk"})
    assert search.status_code == 200
    assert search.json() == {
        "results": [
            {"id": "1", "title": "buy milk", "text": "", "url": "https://todoist.com/showTask?id=1"}
        ]
    }

    fetch = client.post("/tools/fetch", data={"id": "2"})
    assert fetch.status_code == 200
    assert fetch.json()["result"]["title"] == "walk dog"

    missing = client.post("/tools/search", json={})
    assert missing.status_code == 400
    assert missing.json() == {"error": "query_required"}


def test_flat_fetch_passes_upstream_status_through(client) -> None:
    response = client.post("/tools/fetch", json={"id": "404"})

    assert response.status_code == 404
    assert response.json() == {"error": "Task not found"}


def test_flat_route_network_failure_is_server_error(client, fake_todoist) -> None:
    fake_todoist.failure = httpx.ConnectError("connection refused")

    response = client.post("/tools/search", json={"query": "milk"})

    assert response.status_code == 500
    assert "connection refused" in response.json()["error"]


def test_rpc_entry_point(client) -> None:
    initialize = client.post("/", json={"jsonrpc": "2.0", "id": 1, "method": "initialize"})
    assert initialize.status_code == 200
    assert initialize.json()["result"]["serverInfo"]["name"] == "todoist-mcp"

    call = client.post(
        "/",
        json={
            "jsonrpc": "2.0",
            "id": 2,
            "method": "tools/call",
            "params": {"name": "search", "arguments": {"query": "milk"}},
        },
    )
    assert call.status_code == 200
    assert call.json()["result"]["content"] == [
        {"id": "1", "title": "buy milk", "text": "", "url": "https://todoist.com/showTask?id=1"}
    ]


def test_rpc_errors_are_http_200(client) -> None:
    invalid = client.post("/", json={"jsonrpc": "1.0", "id": 5, "method": "initialize"})
    unknown = client.post("/", json={"jsonrpc": "2.0", "id": 6, "method": "tools/call", "params": {"name": "nope"}})
    malformed = client.post("/", content=b"{not json", headers={"content-type": "application/json"})

    assert invalid.status_code == 200
    assert invalid.json()["error"]["code"] == -32600
    assert unknown.status_code == 200
    assert unknown.json()["error"]["code"] == -32601
    assert "nope" in unknown.json()["error"]["message"]
    assert malformed.status_code == 200
    assert malformed.json()["error"]["code"] == -32700


def test_sse_routes_are_registered(client) -> None:
    paths = {getattr(route, "path", None) for route in client.app.routes}
    assert {"/sse", "/sse/"} <= paths
