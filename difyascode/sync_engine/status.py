"""Sync status evaluation.

Status is computed on demand from what is on disk; nothing is cached.  The
law for an app is:

1. no ``SyncMetadata``                   -> ``local-modified``
2. ``md5(content) != local_hash``        -> ``local-modified``
3. otherwise                             -> ``synced``

``remote-modified`` needs a remote round trip and is only answered by
``check_remote_drift``, which callers invoke explicitly (before a push, or
when the operator asks for it).
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from pathlib import Path

from difyascode.sync_engine.errors import NotFoundLocallyError
from difyascode.sync_engine.gateway.base import RemoteGateway
from difyascode.sync_engine.models.entities import DocumentEntry, is_placeholder_id
from difyascode.sync_engine.models.enums import EntityKind, SyncStatus
from difyascode.sync_engine.store.base import HierarchyStore


def compute_hash(content: str) -> str:
    return hashlib.md5(content.encode("utf-8"), usedforsecurity=False).hexdigest()


async def app_status(store: HierarchyStore, app_path: Path) -> SyncStatus:
    metadata = await store.read_sync_metadata(app_path)
    if metadata is None:
        return SyncStatus.LOCAL_MODIFIED
    try:
        content = await store.read_app_content(app_path)
    except NotFoundLocallyError:
        return SyncStatus.LOCAL_MODIFIED
    if compute_hash(content) != metadata.local_hash:
        return SyncStatus.LOCAL_MODIFIED
    return SyncStatus.SYNCED


async def document_status(store: HierarchyStore, dataset_path: Path, entry: DocumentEntry) -> SyncStatus:
    if entry.is_local:
        return SyncStatus.LOCAL_MODIFIED
    try:
        text = await store.read_document(dataset_path, entry.file_name)
    except NotFoundLocallyError:
        return SyncStatus.LOCAL_MODIFIED
    if compute_hash(text) != entry.content_hash:
        return SyncStatus.LOCAL_MODIFIED
    return SyncStatus.SYNCED


async def dataset_status(store: HierarchyStore, dataset_path: Path) -> SyncStatus:
    """A knowledge base is synced when it was pulled and every document is."""
    if await store.read_sync_metadata(dataset_path) is None:
        return SyncStatus.LOCAL_MODIFIED
    manifest = await store.read_manifest(dataset_path)
    for entry in manifest.documents:
        if await document_status(store, dataset_path, entry) != SyncStatus.SYNCED:
            return SyncStatus.LOCAL_MODIFIED
    return SyncStatus.SYNCED


async def check_remote_drift(store: HierarchyStore, gateway: RemoteGateway, app_path: Path) -> SyncStatus:
    """Like ``app_status`` but also asks the remote whether it moved on.

    The gateway must already be logged in and switched to the app's
    workspace.
    """
    metadata = await store.read_sync_metadata(app_path)
    if metadata is None or is_placeholder_id(metadata.remote_id):
        return SyncStatus.LOCAL_MODIFIED
    detail = await gateway.get_app_detail(metadata.remote_id)
    if detail.updated_at != metadata.remote_updated_at:
        return SyncStatus.REMOTE_MODIFIED
    return await app_status(store, app_path)


# -- Tree listing --------------------------------------------------------------


@dataclass(frozen=True)
class StatusLine:
    path: Path
    kind: EntityKind | None
    status: SyncStatus


async def collect_status(store: HierarchyStore, path: Path) -> list[StatusLine]:
    """Local status of every app and fully-pulled document under *path*.

    *path* may be the tree root, a platform, an account, a workspace, an app
    or a knowledge base.
    """
    kind = await store.kind_of(path)
    if kind == EntityKind.APP:
        return [StatusLine(path, kind, await app_status(store, path))]
    if kind == EntityKind.DATASET:
        return await _dataset_lines(store, path)
    if kind == EntityKind.WORKSPACE:
        lines = []
        for app in await store.list(path, EntityKind.APP):
            lines.append(StatusLine(app.path, EntityKind.APP, await app_status(store, app.path)))
        for dataset in await store.list(path, EntityKind.DATASET):
            if dataset.fully_pulled:  # type: ignore[union-attr]
                lines.extend(await _dataset_lines(store, dataset.path))
        return lines

    child_kind = {
        None: EntityKind.PLATFORM,
        EntityKind.PLATFORM: EntityKind.ACCOUNT,
        EntityKind.ACCOUNT: EntityKind.WORKSPACE,
    }[kind]
    lines = []
    for child in await store.list(path, child_kind):
        lines.extend(await collect_status(store, child.path))
    return lines


async def _dataset_lines(store: HierarchyStore, dataset_path: Path) -> list[StatusLine]:
    manifest = await store.read_manifest(dataset_path)
    return [
        StatusLine(dataset_path / entry.file_name, None, await document_status(store, dataset_path, entry))
        for entry in manifest.documents
    ]
