"""Platform and account operations.

Encapsulates the operator-driven parts of the hierarchy: adding, updating
and removing platforms and accounts, and opening an authenticated gateway
session for an account or workspace.
"""

from __future__ import annotations

from pathlib import Path

from loguru import logger

from difyascode.sync_engine.errors import AuthenticationError, NameConflictError
from difyascode.sync_engine.gateway.base import RemoteGateway
from difyascode.sync_engine.gateway.registry import GatewaySessions
from difyascode.sync_engine.models.entities import (
    AccountConfig,
    AccountNode,
    DatasetConfig,
    DatasetNode,
    PlatformConfig,
    PlatformNode,
    WorkspaceConfig,
    WorkspaceNode,
)
from difyascode.sync_engine.models.enums import EntityKind
from difyascode.sync_engine.store import layout
from difyascode.sync_engine.store.base import HierarchyStore

# -- Platforms -----------------------------------------------------------------


async def add_platform(store: HierarchyStore, name: str, url: str) -> Path:
    """Register a platform.  Raises ``NameConflictError`` if the name is taken."""
    path = layout.child_path(store.root, name)
    if await store.kind_of(path) is not None:
        raise NameConflictError(path)
    path = await store.put(store.root, PlatformConfig(name=name, url=url))
    logger.info("Added platform {} at {}", name, path)
    return path


async def list_platforms(store: HierarchyStore) -> list[PlatformNode]:
    return await store.list(store.root, EntityKind.PLATFORM)  # type: ignore[return-value]


async def update_platform(
    store: HierarchyStore,
    sessions: GatewaySessions,
    platform_path: Path,
    *,
    name: str | None = None,
    url: str | None = None,
) -> Path:
    """Rename a platform and/or change its URL.

    Changing the URL evicts the cached session for the old one.
    """
    current: PlatformNode = await store.get(platform_path, EntityKind.PLATFORM)  # type: ignore[assignment]
    new_name = name or current.name
    new_url = layout.normalize_platform_url(url) if url else current.url

    path = platform_path
    if new_name != current.name:
        path = await store.rename(platform_path, new_name)
    path = await store.put(store.root, PlatformConfig(name=new_name, url=new_url), name=path.name, replace=True)

    if new_url != current.url:
        await sessions.evict(current.url)
    return path


async def delete_platform(store: HierarchyStore, sessions: GatewaySessions, platform_path: Path) -> None:
    """Delete a platform with everything under it and drop its session."""
    platform: PlatformNode = await store.get(platform_path, EntityKind.PLATFORM)  # type: ignore[assignment]
    await sessions.evict(platform.url)
    await store.delete(platform_path)
    logger.info("Deleted platform {}", platform.name)


# -- Accounts ------------------------------------------------------------------


async def add_account(
    store: HierarchyStore,
    sessions: GatewaySessions,
    platform_path: Path,
    email: str,
    password: str,
    *,
    verify: bool = True,
) -> Path:
    """Register an account under a platform and store its password encrypted.

    With *verify*, the credentials are checked against the remote first and
    nothing is written if login fails.
    """
    platform: PlatformNode = await store.get(platform_path, EntityKind.PLATFORM)  # type: ignore[assignment]
    if verify:
        await sessions.get(platform.url).login(email, password)

    path = await store.put(platform_path, AccountConfig(email=email))
    await store.write_secret(path, password)
    logger.info("Added account {} on {}", email, platform.name)
    return path


async def update_account_password(store: HierarchyStore, account_path: Path, password: str) -> None:
    await store.get(account_path, EntityKind.ACCOUNT)
    await store.write_secret(account_path, password)


async def delete_account(store: HierarchyStore, account_path: Path) -> None:
    await store.get(account_path, EntityKind.ACCOUNT)
    await store.delete(account_path)


async def list_tree(store: HierarchyStore) -> list[tuple[PlatformNode, list[AccountNode]]]:
    """Platforms with their accounts, for display."""
    tree = []
    for platform in await list_platforms(store):
        accounts = await store.list(platform.path, EntityKind.ACCOUNT)
        tree.append((platform, accounts))  # type: ignore[arg-type]
    return tree


# -- Sessions ------------------------------------------------------------------


async def open_session(store: HierarchyStore, sessions: GatewaySessions, account_path: Path) -> RemoteGateway:
    """Log the account in and return its platform's gateway.

    Raises ``AuthenticationError`` when no password is stored or login fails.
    """
    account: AccountNode = await store.get(account_path, EntityKind.ACCOUNT)  # type: ignore[assignment]
    password = await store.read_secret(account_path)
    if not password:
        raise AuthenticationError(account.email, account.platform_url, "no stored password")
    gateway = sessions.get(account.platform_url)
    await gateway.login(account.email, password)
    return gateway


async def open_workspace_session(
    store: HierarchyStore,
    sessions: GatewaySessions,
    workspace_path: Path,
) -> tuple[RemoteGateway, WorkspaceNode]:
    """Log in for the owning account and switch the session to the workspace."""
    workspace: WorkspaceNode = await store.get(workspace_path, EntityKind.WORKSPACE)  # type: ignore[assignment]
    gateway = await open_session(store, sessions, workspace_path.parent)
    await gateway.switch_workspace(workspace.id)
    return gateway, workspace


# -- Upserts -------------------------------------------------------------------


async def upsert_by_id(
    store: HierarchyStore,
    parent: Path,
    record: WorkspaceConfig | DatasetConfig,
    local: WorkspaceNode | DatasetNode | None,
) -> tuple[Path, bool]:
    """Create or update a remote-identified entity, matching on ``id`` only.

    A remote rename renames the local directory.  When the wanted name is
    already taken by another entity, a new entity lands under
    ``<name>_<id prefix>`` and an existing one keeps its directory.

    Returns the entity path and whether anything was written.
    """
    wanted = layout.directory_name(record.name, record.id)
    fallback = layout.id_suffixed(wanted, record.id)
    if local is None:
        try:
            path = await store.put(parent, record, name=wanted)
        except NameConflictError:
            path = await store.put(parent, record, name=fallback)
        return path, True

    path = local.path
    if path.name not in (wanted, layout.sanitize_name(fallback)):
        try:
            path = await store.rename(path, wanted)
        except NameConflictError:
            logger.warning("Cannot rename {} to {}: name taken", path, record.name)

    if type(record).model_validate(local.model_dump()) == record and path == local.path:
        return path, False
    await store.put(parent, record, name=path.name)
    return path, True
