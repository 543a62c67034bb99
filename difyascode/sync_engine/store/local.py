"""Local filesystem hierarchy store.

Stores every entity as a directory holding one YAML record, under a single
tree root (see ``layout`` for the full picture)::

    {root}/{Platform}/{email}/{Workspace}/studio/{App}/app.yml

Blocking filesystem calls are pushed to a worker thread with ``anyio.to_thread``.

Writes are atomic: data is written to a temporary file in the same
directory, then renamed to the target path, so an interrupted pull never
leaves a half-written record or DSL behind.
"""

from __future__ import annotations

import contextlib
import os
import shutil
import tempfile
from functools import partial
from pathlib import Path
from typing import Any

import yaml
from anyio import to_thread
from loguru import logger
from pydantic import BaseModel, ValidationError

from difyascode.sync_engine.errors import InvalidRecordError, NameConflictError, NotFoundLocallyError
from difyascode.sync_engine.models.entities import (
    AccountConfig,
    AccountNode,
    AppNode,
    DatasetConfig,
    DatasetNode,
    DocumentManifest,
    PlatformConfig,
    PlatformNode,
    SecretsConfig,
    SyncMetadata,
    WorkspaceConfig,
    WorkspaceNode,
)
from difyascode.sync_engine.models.enums import AppType, EntityKind, RegistryKind, ResourceFolder
from difyascode.sync_engine.models.registry import (
    KnowledgeRegistry,
    ModelsRegistry,
    PluginsRegistry,
    RegistrySnapshot,
    ToolsRegistry,
)
from difyascode.sync_engine.store import layout
from difyascode.sync_engine.store.base import Node, Record
from difyascode.sync_engine.store.secrets import SecretCipher, load_key_material

_REGISTRY_MODELS: dict[RegistryKind, type[BaseModel]] = {
    RegistryKind.MODELS: ModelsRegistry,
    RegistryKind.TOOLS: ToolsRegistry,
    RegistryKind.PLUGINS: PluginsRegistry,
    RegistryKind.KNOWLEDGE: KnowledgeRegistry,
}


class LocalHierarchyStore:
    """Local filesystem implementation of the HierarchyStore protocol."""

    def __init__(self, root: str | Path, secret_key: str | None = None) -> None:
        self._root = Path(root)
        self._secret_key = secret_key
        self._cipher: SecretCipher | None = None

    @property
    def root(self) -> Path:
        return self._root

    # -- Generic CRUD ----------------------------------------------------------

    async def list(self, parent: Path, kind: EntityKind) -> list[Node]:
        return await to_thread.run_sync(partial(_list_nodes, _container(parent, kind), kind))

    async def get(self, path: Path, kind: EntityKind) -> Node:
        return await to_thread.run_sync(partial(_read_node, path, kind))

    async def put(self, parent: Path, record: Record, name: str | None = None, *, replace: bool = False) -> Path:
        if isinstance(record, PlatformConfig):
            record = record.model_copy(update={"url": layout.normalize_platform_url(record.url)})
            path = await to_thread.run_sync(partial(_put_record, parent, record, layout.PLATFORM_FILE, name, replace))
            await self.ensure_gitignore()
            return path
        if isinstance(record, AccountConfig):
            return await to_thread.run_sync(partial(_put_record, parent, record, layout.ACCOUNT_FILE, name, replace))
        if isinstance(record, WorkspaceConfig):
            path = await to_thread.run_sync(partial(_put_record, parent, record, layout.WORKSPACE_FILE, name, replace))
            await to_thread.run_sync(partial(_ensure_resource_folders, path))
            return path
        if isinstance(record, DatasetConfig):
            container = layout.knowledge_dir(parent)
            return await to_thread.run_sync(partial(_put_record, container, record, layout.DATASET_FILE, name, replace))
        msg = f"Unsupported record type: {type(record).__name__}"
        raise TypeError(msg)

    async def rename(self, path: Path, new_name: str) -> Path:
        return await to_thread.run_sync(partial(_rename_dir, path, new_name))

    async def delete(self, path: Path) -> None:
        await to_thread.run_sync(partial(_rmtree, path))
        logger.debug("Store: deleted {}", path)

    async def kind_of(self, path: Path) -> EntityKind | None:
        return await to_thread.run_sync(partial(_kind_of, path))

    # -- Apps ------------------------------------------------------------------

    async def write_app(
        self,
        workspace: Path,
        name: str,
        content: str,
        metadata: SyncMetadata,
        *,
        replace: bool = False,
    ) -> Path:
        app_path = layout.child_path(layout.studio_dir(workspace), name)
        await to_thread.run_sync(partial(_write_app, app_path, content, metadata, replace))
        return app_path

    async def read_app_content(self, app_path: Path) -> str:
        path = app_path / layout.APP_CONTENT_FILE
        try:
            return await to_thread.run_sync(partial(_read_file, path))
        except FileNotFoundError as exc:
            raise NotFoundLocallyError(path, "app content") from exc

    async def read_sync_metadata(self, path: Path) -> SyncMetadata | None:
        return await to_thread.run_sync(partial(_read_sync_metadata, path))

    async def write_sync_metadata(self, path: Path, metadata: SyncMetadata) -> None:
        await to_thread.run_sync(partial(_write_record, path / layout.SYNC_FILE, metadata))

    # -- Knowledge -------------------------------------------------------------

    async def read_manifest(self, dataset_path: Path) -> DocumentManifest:
        path = dataset_path / layout.MANIFEST_FILE
        exists = await to_thread.run_sync(path.exists)
        if not exists:
            return DocumentManifest()
        return await to_thread.run_sync(partial(_load_record, path, DocumentManifest))

    async def write_manifest(self, dataset_path: Path, manifest: DocumentManifest) -> None:
        await to_thread.run_sync(partial(_write_record, dataset_path / layout.MANIFEST_FILE, manifest))

    async def document_exists(self, dataset_path: Path, file_name: str) -> bool:
        return await to_thread.run_sync((dataset_path / file_name).is_file)

    async def read_document(self, dataset_path: Path, file_name: str) -> str:
        path = dataset_path / file_name
        try:
            return await to_thread.run_sync(partial(_read_file, path))
        except FileNotFoundError as exc:
            raise NotFoundLocallyError(path, "document") from exc

    async def write_document(self, dataset_path: Path, file_name: str, text: str) -> None:
        await to_thread.run_sync(partial(_atomic_write, dataset_path / file_name, text))

    async def delete_document(self, dataset_path: Path, file_name: str) -> None:
        await to_thread.run_sync(partial((dataset_path / file_name).unlink, missing_ok=True))

    # -- Registries ------------------------------------------------------------

    async def write_registry(self, workspace: Path, kind: RegistryKind, snapshot: RegistrySnapshot) -> Path:
        path = layout.registry_file(workspace, kind)
        await to_thread.run_sync(partial(_write_record, path, snapshot))
        return path

    async def read_registry(self, workspace: Path, kind: RegistryKind) -> RegistrySnapshot | None:
        path = layout.registry_file(workspace, kind)
        exists = await to_thread.run_sync(path.exists)
        if not exists:
            return None
        return await to_thread.run_sync(partial(_load_record, path, _REGISTRY_MODELS[kind]))

    # -- Secrets ---------------------------------------------------------------

    async def write_secret(self, account: Path, password: str) -> None:
        cipher = await self._get_cipher()
        secrets = SecretsConfig(password=cipher.encrypt(password))
        await to_thread.run_sync(partial(_write_record, account / layout.SECRETS_FILE, secrets))
        await self.ensure_gitignore()

    async def read_secret(self, account: Path) -> str | None:
        path = account / layout.SECRETS_FILE
        exists = await to_thread.run_sync(path.exists)
        if not exists:
            return None
        secrets = await to_thread.run_sync(partial(_load_record, path, SecretsConfig))
        if not secrets.password:
            return None
        cipher = await self._get_cipher()
        return cipher.decrypt(secrets.password, source=path)

    async def ensure_gitignore(self) -> None:
        """Make sure the root ignore file excludes secrets and the key file."""
        await to_thread.run_sync(partial(_ensure_ignore_lines, self._root / layout.GITIGNORE_FILE))

    async def _get_cipher(self) -> SecretCipher:
        if self._cipher is None:
            material = self._secret_key
            if not material:
                material = await to_thread.run_sync(partial(load_key_material, self._root / layout.KEY_FILE))
            self._cipher = SecretCipher(material)
        return self._cipher


# -- Sync helpers (run in thread pool) -----------------------------------------


def _container(parent: Path, kind: EntityKind) -> Path:
    if kind == EntityKind.APP:
        return layout.studio_dir(parent)
    if kind == EntityKind.DATASET:
        return layout.knowledge_dir(parent)
    return parent


def _kind_of(path: Path) -> EntityKind | None:
    if not path.is_dir():
        return None
    for kind, marker in layout.RECORD_FILES.items():
        if kind != EntityKind.APP and (path / marker).exists():
            return kind
    if path.parent.name == ResourceFolder.STUDIO:
        return EntityKind.APP
    return None


def _list_nodes(container: Path, kind: EntityKind) -> list[Node]:
    if not container.is_dir():
        return []

    nodes: list[Node] = []
    marker = layout.RECORD_FILES[kind]
    for child in sorted(container.iterdir()):
        if layout.is_hidden(child) or not child.is_dir():
            continue
        # Apps are plain directories; a missing .sync.yml means "never synced".
        if kind != EntityKind.APP and not (child / marker).exists():
            continue
        try:
            nodes.append(_read_node(child, kind))
        except (InvalidRecordError, NotFoundLocallyError, OSError) as exc:
            logger.warning("Store: skipping unreadable {} at {}: {}", kind.value, child, exc)
    return nodes


def _read_node(path: Path, kind: EntityKind) -> Node:
    if not path.is_dir():
        raise NotFoundLocallyError(path, kind.value)

    if kind == EntityKind.PLATFORM:
        platform = _load_record(path / layout.PLATFORM_FILE, PlatformConfig)
        return PlatformNode(**platform.model_dump(), path=path)

    if kind == EntityKind.ACCOUNT:
        account = _load_record(path / layout.ACCOUNT_FILE, AccountConfig)
        platform_file = path.parent / layout.PLATFORM_FILE
        platform_url = _load_record(platform_file, PlatformConfig).url if platform_file.exists() else ""
        return AccountNode(**account.model_dump(), platform_url=platform_url, path=path)

    if kind == EntityKind.WORKSPACE:
        workspace = _load_record(path / layout.WORKSPACE_FILE, WorkspaceConfig)
        return WorkspaceNode(**workspace.model_dump(), path=path)

    if kind == EntityKind.DATASET:
        dataset = _load_record(path / layout.DATASET_FILE, DatasetConfig)
        fully_pulled = (path / layout.SYNC_FILE).exists()
        return DatasetNode(**dataset.model_dump(), path=path, fully_pulled=fully_pulled)

    metadata = _read_sync_metadata(path)
    app_type = (metadata.app_type if metadata else None) or _infer_app_type(path) or AppType.WORKFLOW
    return AppNode(
        remote_id=metadata.remote_id if metadata else "",
        name=path.name,
        app_type=app_type,
        role=metadata.role if metadata else None,
        readonly=metadata.readonly if metadata else False,
        path=path,
    )


def _infer_app_type(app_path: Path) -> AppType | None:
    """Read ``app.mode`` from a never-synced DSL."""
    content_file = app_path / layout.APP_CONTENT_FILE
    if not content_file.exists():
        return None
    try:
        data = yaml.safe_load(_read_file(content_file))
    except yaml.YAMLError:
        return None
    if not isinstance(data, dict) or not isinstance(data.get("app"), dict):
        return None
    mode = data["app"].get("mode")
    return AppType.from_mode(mode) if mode else None


def _identity(record: BaseModel) -> str:
    if isinstance(record, PlatformConfig):
        return record.name
    if isinstance(record, AccountConfig):
        return record.email.lower()
    if isinstance(record, WorkspaceConfig | DatasetConfig):
        return record.id
    msg = f"No identity for {type(record).__name__}"
    raise TypeError(msg)


def _display_name(record: BaseModel) -> str:
    if isinstance(record, AccountConfig):
        return record.email
    return record.name  # type: ignore[attr-defined]


def _put_record(
    container: Path,
    record: BaseModel,
    file_name: str,
    name: str | None = None,
    replace: bool = False,
) -> Path:
    path = layout.child_path(container, name or _display_name(record))
    record_file = path / file_name
    if record_file.exists() and not replace:
        try:
            existing = _load_record(record_file, type(record))
        except InvalidRecordError as exc:
            raise NameConflictError(path, "an unreadable record") from exc
        if _identity(existing) != _identity(record):
            raise NameConflictError(path, _identity(existing))
    _write_record(record_file, record)
    return path


def _ensure_resource_folders(workspace: Path) -> None:
    for folder in ResourceFolder:
        (workspace / folder).mkdir(parents=True, exist_ok=True)


def _rename_dir(path: Path, new_name: str) -> Path:
    target = layout.child_path(path.parent, new_name)
    if target == path:
        return path
    if not path.is_dir():
        raise NotFoundLocallyError(path)
    if target.exists():
        raise NameConflictError(target)
    os.rename(path, target)
    logger.debug("Store: renamed {} -> {}", path, target)
    return target


def _write_app(app_path: Path, content: str, metadata: SyncMetadata, replace: bool) -> None:
    existing = _read_sync_metadata(app_path) if app_path.is_dir() and not replace else None
    if existing and existing.remote_id and metadata.remote_id and existing.remote_id != metadata.remote_id:
        raise NameConflictError(app_path, existing.remote_id)
    _atomic_write(app_path / layout.APP_CONTENT_FILE, content)
    _write_record(app_path / layout.SYNC_FILE, metadata)


def _read_sync_metadata(path: Path) -> SyncMetadata | None:
    sync_file = path / layout.SYNC_FILE
    if not sync_file.exists():
        return None
    return _load_record(sync_file, SyncMetadata)


def _load_record[M: BaseModel](path: Path, model: type[M]) -> M:
    """Parse a YAML record.  Missing -> NotFoundLocallyError, malformed -> InvalidRecordError."""
    try:
        raw = _read_file(path)
    except FileNotFoundError as exc:
        raise NotFoundLocallyError(path, "record") from exc
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise InvalidRecordError(path, str(exc)) from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise InvalidRecordError(path, "expected a mapping")
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise InvalidRecordError(path, str(exc)) from exc


def _write_record(path: Path, record: BaseModel) -> None:
    data: dict[str, Any] = record.model_dump(mode="json", exclude_none=True)
    _atomic_write(path, yaml.safe_dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True))


def _ensure_ignore_lines(gitignore: Path) -> None:
    existing = _read_file(gitignore).splitlines() if gitignore.exists() else []
    missing = [line for line in layout.IGNORE_PATTERNS if line not in existing]
    if not missing:
        return
    lines = [*existing, *missing]
    _atomic_write(gitignore, "\n".join(lines) + "\n")
    logger.info("Store: added {} to {}", ", ".join(missing), gitignore)


def _atomic_write(path: Path, data: str) -> None:
    """Replace *path* with *data* via a sibling temp file and ``os.replace``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise


def _read_file(path: Path) -> str:
    """Read file contents verbatim.  Raises ``FileNotFoundError`` if missing."""
    with open(path, encoding="utf-8", newline="") as f:
        return f.read()


def _rmtree(path: Path) -> None:
    """Delete a directory (or stray file) at *path*; missing paths are ignored."""
    if path.is_dir():
        shutil.rmtree(path)
    elif path.exists():
        path.unlink()
