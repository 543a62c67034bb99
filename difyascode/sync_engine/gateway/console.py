"""Dify console API client.

Speaks the same ``/console/api`` endpoints the web console uses, over one
``httpx.AsyncClient`` per platform.

Authentication
--------------
Newer Dify releases expect the login password base64-encoded, older ones
expect plaintext; ``login`` tries both.  Tokens arrive either in the response
body or as (possibly ``__Host-`` prefixed) cookies.  Every request carries
the access token as a bearer header and as a cookie, plus the CSRF token
header.  A 401 triggers one refresh-and-retry before giving up.
"""

from __future__ import annotations

import base64
import json
from datetime import UTC, datetime
from pathlib import PurePosixPath
from typing import Any

import httpx
from loguru import logger
from pydantic import BaseModel, ValidationError

from difyascode.sync_engine.errors import (
    AuthenticationError,
    RemoteNotFoundError,
    RemoteUnavailableError,
)
from difyascode.sync_engine.models.enums import ModelType
from difyascode.sync_engine.models.registry import (
    ModelProviderSummary,
    ModelsRegistry,
    ModelSummary,
    PluginsRegistry,
    PluginSummary,
    ToolItem,
    ToolParameter,
    ToolProviderSummary,
    ToolsRegistry,
)
from difyascode.sync_engine.models.remote import (
    AppDetail,
    AppExport,
    ImportResult,
    RemoteApp,
    RemoteDataset,
    RemoteDocument,
    RemoteSegment,
    RemoteWorkspace,
)

API = "/console/api"

_REGISTRY_MODEL_TYPES = (
    ModelType.LLM,
    ModelType.TEXT_EMBEDDING,
    ModelType.RERANK,
    ModelType.SPEECH2TEXT,
    ModelType.TTS,
)

_NEW_APP_ICON = {"icon_type": "emoji", "icon": "\U0001f916", "icon_background": "#FFEAD5"}

_DOCUMENT_SETTINGS = {
    "indexing_technique": "high_quality",
    "process_rule": {"mode": "automatic"},
    "doc_form": "text_model",
    "doc_language": "Chinese",
}


class DifyConsoleClient:
    """httpx implementation of the RemoteGateway protocol."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        page_limit: int = 100,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._page_limit = page_limit
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)
        self._access_token: str | None = None
        self._refresh_token: str | None = None
        self._csrf_token: str | None = None

    # -- Session ---------------------------------------------------------------

    @property
    def is_authenticated(self) -> bool:
        return self._access_token is not None

    async def login(self, email: str, password: str) -> None:
        encoded = base64.b64encode(password.encode("utf-8")).decode("ascii")
        if await self._try_login(email, encoded):
            logger.info("Logged in to {} as {}", self.base_url, email)
            return

        logger.debug("Encoded password rejected by {}, retrying with plaintext", self.base_url)
        if await self._try_login(email, password):
            logger.info("Logged in to {} as {} (plaintext password)", self.base_url, email)
            return

        raise AuthenticationError(email, self.base_url)

    async def logout(self) -> None:
        self._access_token = None
        self._refresh_token = None
        self._csrf_token = None
        self._client.cookies.clear()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _try_login(self, email: str, password: str) -> bool:
        response = await self._send(
            "POST",
            f"{API}/login",
            json={"email": email, "password": password, "remember_me": True},
        )
        if response.is_error:
            logger.debug("Login attempt at {} returned {}", self.base_url, response.status_code)
            return False

        body = _json_or_empty(response)
        if body.get("result") == "success":
            data = body.get("data") if isinstance(body.get("data"), dict) else {}
            if data.get("access_token"):
                self._set_tokens(data["access_token"], data.get("refresh_token"), self._csrf_token)
            else:
                self._set_tokens_from_cookies(response)
            # Session-cookie deployments may answer success without any token.
            return True

        if body.get("access_token"):
            self._set_tokens(body["access_token"], body.get("refresh_token"), self._csrf_token)
            return True
        return False

    async def _refresh(self) -> None:
        response = await self._send("POST", f"{API}/refresh-token", json={"refresh_token": self._refresh_token})
        if response.is_error:
            await self.logout()
            raise AuthenticationError(url=self.base_url, detail="session expired and refresh was rejected")

        data = _json_or_empty(response).get("data")
        if isinstance(data, dict) and data.get("access_token"):
            self._set_tokens(data["access_token"], data.get("refresh_token"), self._csrf_token)
        else:
            self._set_tokens_from_cookies(response)
        logger.debug("Refreshed access token for {}", self.base_url)

    def _set_tokens(self, access: str | None, refresh: str | None, csrf: str | None) -> None:
        self._access_token = access
        self._refresh_token = refresh
        self._csrf_token = csrf

    def _set_tokens_from_cookies(self, response: httpx.Response) -> None:
        access = _cookie(response, "access_token")
        if access:
            self._set_tokens(access, _cookie(response, "refresh_token"), _cookie(response, "csrf_token"))

    def _auth_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        cookies = []
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
            cookies.append(f"access_token={self._access_token}")
        if self._refresh_token:
            cookies.append(f"refresh_token={self._refresh_token}")
        if self._csrf_token:
            headers["X-CSRF-Token"] = self._csrf_token
            cookies.append(f"csrf_token={self._csrf_token}")
        if cookies:
            headers["Cookie"] = "; ".join(cookies)
        return headers

    # -- Transport -------------------------------------------------------------

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, path, headers=self._auth_headers(), **kwargs)
        except httpx.HTTPError as exc:
            msg = f"{method} {self.base_url}{path} failed: {exc}"
            raise RemoteUnavailableError(msg) from exc

    async def _request(self, method: str, path: str, *, retry: bool = True, **kwargs: Any) -> httpx.Response:
        response = await self._send(method, path, **kwargs)

        if response.status_code == 401:
            if retry and self._refresh_token:
                await self._refresh()
                return await self._request(method, path, retry=False, **kwargs)
            raise AuthenticationError(url=self.base_url, detail=f"{method} {path} unauthorized")

        if response.status_code == 404:
            msg = f"{method} {path} not found on {self.base_url}"
            raise RemoteNotFoundError(msg)

        if response.is_error:
            msg = f"{method} {path} returned {response.status_code}: {response.text[:200]}"
            raise RemoteUnavailableError(msg)
        return response

    async def _get_json(self, path: str, **params: Any) -> Any:
        response = await self._request("GET", path, params=params or None)
        return _json(response)

    async def _post_json(self, path: str, payload: dict[str, Any]) -> Any:
        response = await self._request("POST", path, json=payload)
        return _json(response)

    async def _paginate(self, path: str) -> list[dict[str, Any]]:
        """Walk a ``page`` / ``limit`` / ``has_more`` listing to the end."""
        items: list[dict[str, Any]] = []
        page = 1
        while True:
            body = await self._get_json(path, page=page, limit=self._page_limit)
            items.extend(_items(body, "data"))
            if not isinstance(body, dict) or not body.get("has_more"):
                return items
            page += 1

    # -- Workspaces ------------------------------------------------------------

    async def list_workspaces(self) -> list[RemoteWorkspace]:
        try:
            body = await self._get_json(f"{API}/workspaces")
        except RemoteUnavailableError:
            # Older deployments only expose the current tenant on the profile.
            profile = await self._get_json(f"{API}/account/profile")
            if not isinstance(profile, dict) or not profile.get("current_tenant_id"):
                raise
            return [
                RemoteWorkspace(
                    id=profile["current_tenant_id"],
                    name=profile.get("current_tenant_name") or "Default Workspace",
                    role=profile.get("current_tenant_role") or "normal",
                    current=True,
                )
            ]
        return [_parse(RemoteWorkspace, ws) for ws in _items(body, "workspaces")]

    async def switch_workspace(self, workspace_id: str) -> None:
        await self._post_json(f"{API}/workspaces/switch", {"tenant_id": workspace_id})
        logger.debug("Switched {} to workspace {}", self.base_url, workspace_id)

    # -- Apps ------------------------------------------------------------------

    async def list_apps(self) -> list[RemoteApp]:
        return [_parse(RemoteApp, app) for app in await self._paginate(f"{API}/apps")]

    async def get_app_detail(self, app_id: str) -> AppDetail:
        return _parse(AppDetail, await self._get_json(f"{API}/apps/{app_id}"))

    async def export_app(self, app_id: str) -> AppExport:
        body = await self._get_json(f"{API}/apps/{app_id}/export", include_secret="false")
        content = body.get("data") if isinstance(body, dict) else body
        if not isinstance(content, str):
            msg = f"Export of app {app_id} returned no DSL"
            raise RemoteUnavailableError(msg)
        detail = await self.get_app_detail(app_id)
        return AppExport(content=content, updated_at=detail.updated_at)

    async def create_app(self, name: str, mode: str) -> AppDetail:
        payload = {"name": name, "mode": mode, "description": "", **_NEW_APP_ICON}
        body = await self._post_json(f"{API}/apps", payload)
        logger.info("Created app {} ({}) on {}", name, mode, self.base_url)
        return _parse(AppDetail, body)

    async def import_app(self, content: str, app_id: str | None = None, name: str | None = None) -> ImportResult:
        payload: dict[str, Any] = {"mode": "yaml-content", "yaml_content": content}
        if app_id:
            payload["app_id"] = app_id
        if name:
            payload["name"] = name
        result = _import_result(await self._post_json(f"{API}/apps/imports", payload))
        if app_id and result.app_id and result.app_id != app_id:
            logger.warning("Import into {} reported a different app id {}", app_id, result.app_id)
        return result

    async def confirm_import(self, import_id: str) -> ImportResult:
        return _import_result(await self._post_json(f"{API}/apps/imports/{import_id}/confirm", {}))

    # -- Knowledge -------------------------------------------------------------

    async def list_datasets(self) -> list[RemoteDataset]:
        return [_parse(RemoteDataset, ds) for ds in await self._paginate(f"{API}/datasets")]

    async def get_dataset(self, dataset_id: str) -> RemoteDataset:
        return _parse(RemoteDataset, await self._get_json(f"{API}/datasets/{dataset_id}"))

    async def list_documents(self, dataset_id: str) -> list[RemoteDocument]:
        raw = await self._paginate(f"{API}/datasets/{dataset_id}/documents")
        return [_parse(RemoteDocument, doc) for doc in raw]

    async def list_segments(self, dataset_id: str, document_id: str) -> list[RemoteSegment]:
        raw = await self._paginate(f"{API}/datasets/{dataset_id}/documents/{document_id}/segments")
        return [_parse(RemoteSegment, seg) for seg in raw]

    async def create_document(self, dataset_id: str, name: str, text: str) -> RemoteDocument:
        file_name = name if PurePosixPath(name).suffix else f"{name}.txt"
        base = f"{API}/datasets/{dataset_id}"

        # Upload paths moved between releases; the first that exists wins.
        for path in (
            f"{base}/document/create-by-file",
            f"{base}/document/create_by_file",
            f"{base}/documents/create-by-file",
            f"{base}/documents/create_by_file",
        ):
            try:
                body = await self._post_upload(path, file_name, text)
            except RemoteNotFoundError:
                continue
            return _created_document(body, name)

        for path in (f"{base}/document/create-by-text", f"{base}/document/create_by_text"):
            payload = {"name": name, "text": text, **_DOCUMENT_SETTINGS}
            try:
                body = await self._post_json(path, payload)
            except RemoteNotFoundError:
                continue
            return _created_document(body, name)

        msg = f"No document creation endpoint found on {self.base_url}"
        raise RemoteUnavailableError(msg)

    async def _post_upload(self, path: str, file_name: str, text: str) -> Any:
        files = {"file": (file_name, text.encode("utf-8"), "text/plain; charset=utf-8")}
        response = await self._request("POST", path, files=files, data={"data": json.dumps(_DOCUMENT_SETTINGS)})
        return _json(response)

    async def update_document(self, dataset_id: str, document_id: str, name: str, text: str) -> None:
        # The console has no "replace content" call: swap all segments for one.
        base = f"{API}/datasets/{dataset_id}/documents/{document_id}/segments"
        segments = await self.list_segments(dataset_id, document_id)
        for segment in segments:
            await self._request("DELETE", f"{base}/{segment.id}")
        await self._post_json(base, {"segments": [{"content": text}]})
        logger.info("Replaced {} segment(s) of document {} ({})", len(segments), name, document_id)

    async def delete_document(self, dataset_id: str, document_id: str) -> None:
        await self._request("DELETE", f"{API}/datasets/{dataset_id}/documents/{document_id}")

    # -- Registries ------------------------------------------------------------

    async def list_models(self) -> ModelsRegistry:
        providers = []
        for raw in _items(await self._get_json(f"{API}/workspaces/current/model-providers"), "data"):
            if not raw.get("provider"):
                continue
            system_creds = (raw.get("system_configuration") or {}).get("current_credentials")
            custom_creds = ((raw.get("custom_configuration") or {}).get("provider") or {}).get("credentials")
            providers.append(
                ModelProviderSummary(
                    provider=raw["provider"],
                    label=_label(raw.get("label"), raw["provider"]),
                    status="active" if (system_creds or custom_creds) else "no-configure",
                )
            )

        by_provider: dict[str, list[ModelSummary]] = {}
        default_models: dict[str, str | None] = {}
        for model_type in _REGISTRY_MODEL_TYPES:
            try:
                for model in await self._models_for_type(model_type):
                    by_provider.setdefault(model.provider, []).append(model)
                default_models[model_type.value] = await self._default_model(model_type)
            except RemoteUnavailableError as exc:
                logger.warning("Skipping {} models on {}: {}", model_type.value, self.base_url, exc)

        for provider in providers:
            provider.models = by_provider.get(provider.provider, [])
        active = [p for p in providers if p.models or p.status == "active"]
        return ModelsRegistry(last_synced_at=_now(), default_models=default_models, providers=active)

    async def _models_for_type(self, model_type: ModelType) -> list[ModelSummary]:
        body = await self._get_json(f"{API}/workspaces/current/models/model-types/{model_type.value}")
        models = []
        for entry in _items(body, "data"):
            for raw in entry.get("models") or []:
                if not raw.get("model") or not entry.get("provider"):
                    continue
                properties = raw.get("model_properties") or {}
                models.append(
                    ModelSummary(
                        model=raw["model"],
                        label=_label(raw.get("label"), raw["model"]),
                        model_type=model_type,
                        provider=entry["provider"],
                        features=raw.get("features") or [],
                        context_size=properties.get("context_size"),
                        mode=properties.get("mode"),
                        deprecated=bool(raw.get("deprecated")),
                        status=raw.get("status"),
                    )
                )
        return models

    async def _default_model(self, model_type: ModelType) -> str | None:
        body = await self._get_json(f"{API}/workspaces/current/default-model", model_type=model_type.value)
        data = body.get("data") if isinstance(body, dict) else None
        return data.get("model") if isinstance(data, dict) else None

    async def list_tools(self) -> ToolsRegistry:
        providers = []
        for raw in _items(await self._get_json(f"{API}/workspaces/current/tool-providers"), "data"):
            if not raw.get("name"):
                continue
            tools = raw.get("tools") or []
            if not tools or "parameters" not in tools[0]:
                tools = await self._provider_tools(raw["name"], raw.get("type") or "builtin") or tools
            providers.append(
                ToolProviderSummary(
                    name=raw["name"],
                    author=raw.get("author") or "dify",
                    label=_label(raw.get("label"), raw["name"]),
                    type=raw.get("type") or "builtin",
                    is_team_authorization=bool(raw.get("is_team_authorization")),
                    tools=[_tool_item(t) for t in tools],
                )
            )
        return ToolsRegistry(last_synced_at=_now(), providers=providers)

    async def _provider_tools(self, provider: str, provider_type: str) -> list[dict[str, Any]]:
        base = f"{API}/workspaces/current"
        for path in (
            f"{base}/tool-provider/{provider_type}/{provider}/tools",
            f"{base}/tool-provider/builtin/{provider}/tools",
            f"{base}/tool-providers/{provider}/tools",
        ):
            try:
                body = await self._get_json(path)
            except RemoteNotFoundError:
                continue
            if isinstance(body, list):
                return body
        return []

    async def list_plugins(self) -> PluginsRegistry:
        body = await self._get_json(f"{API}/workspaces/current/plugin/list", page=1, page_size=100)
        plugins = []
        for raw in _items(body, "plugins"):
            if not raw.get("plugin_id"):
                continue
            declaration = raw.get("declaration") or {}
            name = raw.get("name") or raw["plugin_id"]
            plugins.append(
                PluginSummary(
                    plugin_id=raw["plugin_id"],
                    name=name,
                    label=_label(declaration.get("label"), name),
                    version=raw.get("version") or "",
                    author=declaration.get("author") or "unknown",
                    category=declaration.get("category") or "tool",
                    source=raw.get("source"),
                    latest_version=raw.get("latest_version"),
                    installation_id=raw.get("installation_id"),
                )
            )
        return PluginsRegistry(last_synced_at=_now(), plugins=plugins)


# -- Response helpers ----------------------------------------------------------


def _json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        msg = f"{response.request.method} {response.request.url.path} returned a non-JSON body"
        raise RemoteUnavailableError(msg) from exc


def _json_or_empty(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _items(body: Any, key: str) -> list[dict[str, Any]]:
    """Listings come either wrapped (``{key: [...]}``) or as a bare list."""
    if isinstance(body, dict):
        body = body.get(key) or []
    return [item for item in body if isinstance(item, dict)] if isinstance(body, list) else []


def _parse[M: BaseModel](model: type[M], raw: Any) -> M:
    """Validate one response object, dropping nulls so model defaults apply.

    A malformed payload is reported like any other bad response, so callers
    that contain remote failures per item also contain this one.
    """
    if not isinstance(raw, dict):
        msg = f"Expected an object for {model.__name__}, got {type(raw).__name__}"
        raise RemoteUnavailableError(msg)
    try:
        return model.model_validate({k: v for k, v in raw.items() if v is not None})
    except ValidationError as exc:
        msg = f"Malformed {model.__name__} from the remote: {exc.error_count()} invalid field(s)"
        raise RemoteUnavailableError(msg) from exc


def _cookie(response: httpx.Response, name: str) -> str | None:
    return response.cookies.get(name) or response.cookies.get(f"__Host-{name}")


def _label(value: Any, fallback: str) -> str:
    if isinstance(value, str) and value:
        return value
    if isinstance(value, dict):
        return value.get("en_US") or value.get("zh_Hans") or fallback
    return fallback


def _tool_item(raw: dict[str, Any]) -> ToolItem:
    description = raw.get("description") or raw.get("human_description")
    return ToolItem(
        name=raw.get("name") or "",
        label=_label(raw.get("label"), raw.get("name") or ""),
        description=_label(description, "") or None,
        parameters=[
            ToolParameter(
                name=p.get("name") or "",
                label=_label(p.get("label"), p.get("name") or ""),
                description=_label(p.get("human_description"), "") or None,
                type=p.get("type") or p.get("form") or "string",
                required=bool(p.get("required")),
            )
            for p in raw.get("parameters") or []
            if isinstance(p, dict)
        ],
    )


def _import_result(body: Any) -> ImportResult:
    if not isinstance(body, dict):
        return ImportResult(status="failed", error="unexpected import response")
    return ImportResult(
        import_id=body.get("id") or body.get("import_id"),
        app_id=body.get("app_id"),
        status=body.get("status") or "completed",
        error=body.get("error") or None,
    )


def _created_document(body: Any, name: str) -> RemoteDocument:
    document = body.get("document") if isinstance(body, dict) else None
    doc_id = (document or {}).get("id") or (body.get("id") if isinstance(body, dict) else None)
    if not doc_id:
        msg = f"Document {name} was created but no id was returned"
        raise RemoteUnavailableError(msg)
    return RemoteDocument(id=doc_id, name=(document or {}).get("name") or name)


def _now() -> datetime:
    return datetime.now(UTC)
