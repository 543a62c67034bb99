"""Tests for DifyConsoleClient over httpx.MockTransport."""

from __future__ import annotations

import base64
import json
from collections.abc import AsyncIterator, Callable

import httpx
import pytest

from difyascode.sync_engine.errors import AuthenticationError, RemoteNotFoundError, RemoteUnavailableError
from difyascode.sync_engine.gateway.console import API, DifyConsoleClient

BASE_URL = "https://dify.example.com"

Handler = Callable[[httpx.Request], httpx.Response]

TOKENS = {"result": "success", "data": {"access_token": "tok-1", "refresh_token": "ref-1"}}


@pytest.fixture
async def make_client() -> AsyncIterator[Callable[[Handler], DifyConsoleClient]]:
    clients: list[DifyConsoleClient] = []

    def make(handler: Handler) -> DifyConsoleClient:
        client = DifyConsoleClient(BASE_URL, page_limit=2, transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield make
    for client in clients:
        await client.aclose()


def _body(request: httpx.Request) -> dict:
    return json.loads(request.content) if request.content else {}


def _route(routes: dict[tuple[str, str], httpx.Response | Handler]) -> Handler:
    """Dispatch on (method, path); unknown routes answer 404."""

    def handler(request: httpx.Request) -> httpx.Response:
        target = routes.get((request.method, request.url.path))
        if target is None:
            return httpx.Response(404, json={"code": "not_found"})
        return target(request) if callable(target) else target

    return handler


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


async def test_login_sends_base64_password_first(make_client: Callable[[Handler], DifyConsoleClient]) -> None:
    passwords: list[str] = []

    def login(request: httpx.Request) -> httpx.Response:
        passwords.append(_body(request)["password"])
        return httpx.Response(200, json=TOKENS)

    client = make_client(_route({("POST", f"{API}/login"): login}))
    await client.login("dev@example.com", "s3cret")

    assert passwords == [base64.b64encode(b"s3cret").decode()]
    assert client.is_authenticated


async def test_login_falls_back_to_plaintext(make_client: Callable[[Handler], DifyConsoleClient]) -> None:
    passwords: list[str] = []
    seen_auth: list[str | None] = []

    def login(request: httpx.Request) -> httpx.Response:
        password = _body(request)["password"]
        passwords.append(password)
        if password != "s3cret":
            return httpx.Response(401, json={"code": "invalid_password"})
        return httpx.Response(200, json=TOKENS)

    def workspaces(request: httpx.Request) -> httpx.Response:
        seen_auth.append(request.headers.get("Authorization"))
        return httpx.Response(200, json={"workspaces": [{"id": "ws-1", "name": "Main", "role": "owner"}]})

    client = make_client(
        _route({("POST", f"{API}/login"): login, ("GET", f"{API}/workspaces"): workspaces}),
    )
    await client.login("dev@example.com", "s3cret")
    result = await client.list_workspaces()

    assert passwords[-1] == "s3cret"
    assert len(passwords) == 2
    assert seen_auth == ["Bearer tok-1"]
    assert [(ws.id, ws.name, ws.role) for ws in result] == [("ws-1", "Main", "owner")]


async def test_login_rejected(make_client: Callable[[Handler], DifyConsoleClient]) -> None:
    client = make_client(_route({("POST", f"{API}/login"): httpx.Response(401, json={"result": "fail"})}))

    with pytest.raises(AuthenticationError):
        await client.login("dev@example.com", "nope")
    assert not client.is_authenticated


async def test_login_tokens_from_cookies(make_client: Callable[[Handler], DifyConsoleClient]) -> None:
    headers = [
        ("Set-Cookie", "access_token=cookie-tok; Path=/"),
        ("Set-Cookie", "csrf_token=csrf-1; Path=/"),
    ]
    seen: list[httpx.Headers] = []

    def apps(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers)
        return httpx.Response(200, json={"data": [], "has_more": False})

    client = make_client(
        _route(
            {
                ("POST", f"{API}/login"): httpx.Response(200, headers=headers, json={"result": "success"}),
                ("GET", f"{API}/apps"): apps,
            }
        )
    )
    await client.login("dev@example.com", "s3cret")
    await client.list_apps()

    assert seen[0]["Authorization"] == "Bearer cookie-tok"
    assert seen[0]["X-CSRF-Token"] == "csrf-1"


async def test_refresh_on_401_then_retry(make_client: Callable[[Handler], DifyConsoleClient]) -> None:
    seen_auth: list[str | None] = []

    def apps(request: httpx.Request) -> httpx.Response:
        seen_auth.append(request.headers.get("Authorization"))
        if len(seen_auth) == 1:
            return httpx.Response(401, json={"code": "unauthorized"})
        return httpx.Response(200, json={"data": [{"id": "app-1", "name": "Flow"}], "has_more": False})

    def refresh(request: httpx.Request) -> httpx.Response:
        assert _body(request) == {"refresh_token": "ref-1"}
        return httpx.Response(200, json={"data": {"access_token": "tok-2", "refresh_token": "ref-2"}})

    client = make_client(
        _route(
            {
                ("POST", f"{API}/login"): httpx.Response(200, json=TOKENS),
                ("POST", f"{API}/refresh-token"): refresh,
                ("GET", f"{API}/apps"): apps,
            }
        )
    )
    await client.login("dev@example.com", "s3cret")
    apps_listed = await client.list_apps()

    assert seen_auth == ["Bearer tok-1", "Bearer tok-2"]
    assert [a.id for a in apps_listed] == ["app-1"]


async def test_rejected_refresh_raises_authentication(make_client: Callable[[Handler], DifyConsoleClient]) -> None:
    client = make_client(
        _route(
            {
                ("POST", f"{API}/login"): httpx.Response(200, json=TOKENS),
                ("POST", f"{API}/refresh-token"): httpx.Response(401, json={}),
                ("GET", f"{API}/apps"): httpx.Response(401, json={}),
            }
        )
    )
    await client.login("dev@example.com", "s3cret")

    with pytest.raises(AuthenticationError):
        await client.list_apps()
    assert not client.is_authenticated


async def test_logout_forgets_tokens(make_client: Callable[[Handler], DifyConsoleClient]) -> None:
    client = make_client(_route({("POST", f"{API}/login"): httpx.Response(200, json=TOKENS)}))
    await client.login("dev@example.com", "s3cret")
    await client.logout()
    assert not client.is_authenticated


# ---------------------------------------------------------------------------
# Transport errors and pagination
# ---------------------------------------------------------------------------


async def test_pagination_follows_has_more(make_client: Callable[[Handler], DifyConsoleClient]) -> None:
    pages: list[tuple[str, str]] = []

    def apps(request: httpx.Request) -> httpx.Response:
        page = request.url.params["page"]
        pages.append((page, request.url.params["limit"]))
        if page == "1":
            data = [{"id": "a1", "name": "One", "mode": "chat"}, {"id": "a2", "name": "Two"}]
            return httpx.Response(200, json={"data": data, "has_more": True})
        return httpx.Response(200, json={"data": [{"id": "a3", "name": "Three"}], "has_more": False})

    client = make_client(_route({("GET", f"{API}/apps"): apps}))
    result = await client.list_apps()

    assert pages == [("1", "2"), ("2", "2")]
    assert [a.id for a in result] == ["a1", "a2", "a3"]
    assert result[0].mode == "chat"
    assert result[1].mode == "workflow"


async def test_malformed_app_maps_to_remote_unavailable(make_client: Callable[[Handler], DifyConsoleClient]) -> None:
    body = {"data": [{"id": "a1", "name": None, "mode": "workflow"}], "has_more": False}
    client = make_client(_route({("GET", f"{API}/apps"): httpx.Response(200, json=body)}))

    with pytest.raises(RemoteUnavailableError, match="Malformed RemoteApp"):
        await client.list_apps()


async def test_segment_without_position_maps_to_remote_unavailable(
    make_client: Callable[[Handler], DifyConsoleClient],
) -> None:
    body = {"data": [{"id": "s1", "content": "alpha"}], "has_more": False}
    client = make_client(
        _route({("GET", f"{API}/datasets/ds-1/documents/doc-1/segments"): httpx.Response(200, json=body)})
    )

    with pytest.raises(RemoteUnavailableError, match="Malformed RemoteSegment"):
        await client.list_segments("ds-1", "doc-1")


async def test_not_found_maps_to_remote_not_found(make_client: Callable[[Handler], DifyConsoleClient]) -> None:
    client = make_client(_route({}))
    with pytest.raises(RemoteNotFoundError):
        await client.get_app_detail("missing")


async def test_server_error_maps_to_remote_unavailable(make_client: Callable[[Handler], DifyConsoleClient]) -> None:
    client = make_client(_route({("GET", f"{API}/apps/app-1"): httpx.Response(502, text="bad gateway")}))
    with pytest.raises(RemoteUnavailableError) as exc_info:
        await client.get_app_detail("app-1")
    assert not isinstance(exc_info.value, RemoteNotFoundError)


async def test_network_error_maps_to_remote_unavailable(make_client: Callable[[Handler], DifyConsoleClient]) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler)
    with pytest.raises(RemoteUnavailableError):
        await client.list_apps()


async def test_workspaces_fall_back_to_profile(make_client: Callable[[Handler], DifyConsoleClient]) -> None:
    profile = {"current_tenant_id": "ws-9", "current_tenant_name": "Legacy", "current_tenant_role": "admin"}
    client = make_client(_route({("GET", f"{API}/account/profile"): httpx.Response(200, json=profile)}))

    result = await client.list_workspaces()

    assert [(ws.id, ws.name, ws.role, ws.current) for ws in result] == [("ws-9", "Legacy", "admin", True)]


# ---------------------------------------------------------------------------
# Apps
# ---------------------------------------------------------------------------


async def test_export_app_carries_detail_timestamp(make_client: Callable[[Handler], DifyConsoleClient]) -> None:
    exported: list[str] = []

    def export(request: httpx.Request) -> httpx.Response:
        exported.append(request.url.params["include_secret"])
        return httpx.Response(200, json={"data": "app:\n  mode: workflow\n"})

    detail = {"id": "app-1", "name": "Flow", "mode": "workflow", "updated_at": 1700000123}
    client = make_client(
        _route(
            {
                ("GET", f"{API}/apps/app-1/export"): export,
                ("GET", f"{API}/apps/app-1"): httpx.Response(200, json=detail),
            }
        )
    )
    result = await client.export_app("app-1")

    assert result.content == "app:\n  mode: workflow\n"
    assert result.updated_at == "1700000123"
    assert exported == ["false"]


async def test_create_app_payload(make_client: Callable[[Handler], DifyConsoleClient]) -> None:
    payloads: list[dict] = []

    def create(request: httpx.Request) -> httpx.Response:
        payloads.append(_body(request))
        return httpx.Response(201, json={"id": "app-7", "name": "Draft", "mode": "advanced-chat", "updated_at": None})

    client = make_client(_route({("POST", f"{API}/apps"): create}))
    detail = await client.create_app("Draft", "advanced-chat")

    assert detail.id == "app-7"
    assert detail.updated_at == ""
    assert payloads[0]["name"] == "Draft"
    assert payloads[0]["mode"] == "advanced-chat"


async def test_two_phase_import(make_client: Callable[[Handler], DifyConsoleClient]) -> None:
    payloads: list[dict] = []

    def start(request: httpx.Request) -> httpx.Response:
        payloads.append(_body(request))
        return httpx.Response(202, json={"id": "imp-1", "status": "pending", "app_id": "app-1"})

    client = make_client(
        _route(
            {
                ("POST", f"{API}/apps/imports"): start,
                ("POST", f"{API}/apps/imports/imp-1/confirm"): httpx.Response(
                    200, json={"id": "imp-1", "status": "completed", "app_id": "app-1"}
                ),
            }
        )
    )
    first = await client.import_app("dsl", app_id="app-1")
    assert first.pending
    assert first.import_id == "imp-1"
    assert payloads == [{"mode": "yaml-content", "yaml_content": "dsl", "app_id": "app-1"}]

    confirmed = await client.confirm_import("imp-1")
    assert not confirmed.pending
    assert confirmed.app_id == "app-1"


async def test_failed_import_status(make_client: Callable[[Handler], DifyConsoleClient]) -> None:
    client = make_client(
        _route({("POST", f"{API}/apps/imports"): httpx.Response(200, json={"status": "failed", "error": "bad dsl"})})
    )
    result = await client.import_app("dsl", name="Copy")
    assert result.failed
    assert result.error == "bad dsl"


# ---------------------------------------------------------------------------
# Knowledge
# ---------------------------------------------------------------------------


async def test_create_document_falls_back_to_text_endpoint(
    make_client: Callable[[Handler], DifyConsoleClient],
) -> None:
    payloads: list[dict] = []

    def create_by_text(request: httpx.Request) -> httpx.Response:
        payloads.append(_body(request))
        return httpx.Response(200, json={"document": {"id": "doc-1", "name": "Guide"}})

    client = make_client(_route({("POST", f"{API}/datasets/ds-1/document/create-by-text"): create_by_text}))
    document = await client.create_document("ds-1", "Guide", "Step one.")

    assert document.id == "doc-1"
    assert payloads[0]["name"] == "Guide"
    assert payloads[0]["text"] == "Step one."


async def test_create_document_by_file_upload(make_client: Callable[[Handler], DifyConsoleClient]) -> None:
    uploads: list[bytes] = []

    def upload(request: httpx.Request) -> httpx.Response:
        uploads.append(request.content)
        return httpx.Response(200, json={"document": {"id": "doc-2"}})

    client = make_client(_route({("POST", f"{API}/datasets/ds-1/documents/create-by-file"): upload}))
    document = await client.create_document("ds-1", "notes.md", "# Notes")

    assert document.id == "doc-2"
    assert document.name == "notes.md"
    assert b'filename="notes.md"' in uploads[0]
    assert b"# Notes" in uploads[0]


async def test_update_document_replaces_segments(make_client: Callable[[Handler], DifyConsoleClient]) -> None:
    calls: list[tuple[str, str]] = []
    base = f"{API}/datasets/ds-1/documents/doc-1/segments"

    def record(response: httpx.Response) -> Handler:
        def handler(request: httpx.Request) -> httpx.Response:
            calls.append((request.method, request.url.path))
            return response

        return handler

    segments = {"data": [{"id": "s1", "position": 1, "content": "a"}, {"id": "s2", "position": 2, "content": "b"}]}
    client = make_client(
        _route(
            {
                ("GET", base): record(httpx.Response(200, json=segments)),
                ("DELETE", f"{base}/s1"): record(httpx.Response(204)),
                ("DELETE", f"{base}/s2"): record(httpx.Response(204)),
                ("POST", base): record(httpx.Response(200, json={"data": []})),
            }
        )
    )
    await client.update_document("ds-1", "doc-1", "Guide", "new text")

    assert calls == [("GET", base), ("DELETE", f"{base}/s1"), ("DELETE", f"{base}/s2"), ("POST", base)]


async def test_list_segments(make_client: Callable[[Handler], DifyConsoleClient]) -> None:
    body = {
        "data": [
            {"id": "s1", "position": 1, "content": "alpha", "keywords": None, "answer": None},
            {"id": "s2", "position": 2, "content": "beta", "keywords": ["b"]},
        ],
        "has_more": False,
    }
    client = make_client(
        _route({("GET", f"{API}/datasets/ds-1/documents/doc-1/segments"): httpx.Response(200, json=body)})
    )
    segments = await client.list_segments("ds-1", "doc-1")
    assert [(s.position, s.content, s.keywords) for s in segments] == [(1, "alpha", []), (2, "beta", ["b"])]


# ---------------------------------------------------------------------------
# Registries
# ---------------------------------------------------------------------------


async def test_list_models(make_client: Callable[[Handler], DifyConsoleClient]) -> None:
    providers = {
        "data": [
            {
                "provider": "openai",
                "label": {"en_US": "OpenAI"},
                "custom_configuration": {"provider": {"credentials": {"api_key": "x"}}},
            },
            {"provider": "anthropic", "label": {"en_US": "Anthropic"}},
        ]
    }
    llms = {
        "data": [
            {
                "provider": "openai",
                "models": [
                    {
                        "model": "gpt-4o",
                        "label": {"en_US": "GPT-4o"},
                        "features": ["vision"],
                        "model_properties": {"context_size": 128000, "mode": "chat"},
                        "status": "active",
                    }
                ],
            }
        ]
    }

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/model-providers"):
            return httpx.Response(200, json=providers)
        if path.endswith("/model-types/llm"):
            return httpx.Response(200, json=llms)
        if "/model-types/" in path:
            return httpx.Response(200, json={"data": []})
        if path.endswith("/default-model"):
            if request.url.params["model_type"] == "llm":
                return httpx.Response(200, json={"data": {"model": "gpt-4o"}})
            return httpx.Response(200, json={"data": None})
        return httpx.Response(404)

    registry = await make_client(handler).list_models()

    assert [p.provider for p in registry.providers] == ["openai"]
    openai = registry.providers[0]
    assert openai.label == "OpenAI"
    assert openai.status == "active"
    assert [(m.model, m.context_size, m.mode) for m in openai.models] == [("gpt-4o", 128000, "chat")]
    assert registry.default_models["llm"] == "gpt-4o"
    assert registry.default_models["tts"] is None
    assert registry.last_synced_at is not None


async def test_list_tools_fetches_parameters(make_client: Callable[[Handler], DifyConsoleClient]) -> None:
    providers = {"data": [{"name": "google", "label": {"en_US": "Google"}, "type": "builtin", "tools": []}]}
    tools = [
        {
            "name": "google_search",
            "label": {"en_US": "Search"},
            "description": {"en_US": "Search the web"},
            "parameters": [{"name": "query", "type": "string", "required": True}],
        }
    ]
    base = f"{API}/workspaces/current"
    client = make_client(
        _route(
            {
                ("GET", f"{base}/tool-providers"): httpx.Response(200, json=providers),
                ("GET", f"{base}/tool-provider/builtin/google/tools"): httpx.Response(200, json=tools),
            }
        )
    )
    registry = await client.list_tools()

    google = registry.providers[0]
    assert google.label == "Google"
    assert google.author == "dify"
    assert [t.name for t in google.tools] == ["google_search"]
    assert google.tools[0].description == "Search the web"
    assert google.tools[0].parameters[0].required is True


async def test_list_plugins(make_client: Callable[[Handler], DifyConsoleClient]) -> None:
    body = {
        "plugins": [
            {
                "plugin_id": "langgenius/openai",
                "name": "openai",
                "version": "0.1.0",
                "declaration": {"label": {"en_US": "OpenAI"}, "author": "langgenius", "category": "model"},
            },
            {"name": "broken"},
        ]
    }
    client = make_client(_route({("GET", f"{API}/workspaces/current/plugin/list"): httpx.Response(200, json=body)}))
    registry = await client.list_plugins()

    assert [(p.plugin_id, p.label, p.category) for p in registry.plugins] == [("langgenius/openai", "OpenAI", "model")]
