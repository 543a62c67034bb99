"""Pull reconciler -- makes the local tree match the remote.

Pull walks the hierarchy top-down (platforms, accounts, workspaces, apps)
and treats the remote as authoritative for apps and registries:

- workspaces and apps are matched by remote id, never by name; a remote
  rename renames the local directory;
- local workspaces and apps whose id the remote no longer reports are
  deleted;
- an app directory without any remote identity is an orphan and is deleted
  unless some remote app still carries its name;
- knowledge bases are only re-pulled when they were pulled in full before
  (see ``KnowledgeManager``).

Failures are contained per scope: a bad app does not stop its siblings, a
rejected login stops only that account.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from difyascode.sync_engine.errors import (
    AuthenticationError,
    InvalidNameError,
    InvalidRecordError,
    NameConflictError,
    NotFoundLocallyError,
    SyncError,
    UnsupportedOperationError,
)
from difyascode.sync_engine.managers.hierarchy import open_session, open_workspace_session, upsert_by_id
from difyascode.sync_engine.models.entities import AppNode, SyncMetadata, WorkspaceConfig, WorkspaceNode
from difyascode.sync_engine.models.enums import EntityKind, RegistryKind, UserRole
from difyascode.sync_engine.models.registry import DatasetSummary, KnowledgeRegistry, RegistrySnapshot
from difyascode.sync_engine.models.remote import RemoteApp, RemoteDataset
from difyascode.sync_engine.models.report import SyncReport
from difyascode.sync_engine.status import compute_hash
from difyascode.sync_engine.store import layout

if TYPE_CHECKING:
    from difyascode.sync_engine.gateway.base import RemoteGateway
    from difyascode.sync_engine.gateway.registry import GatewaySessions
    from difyascode.sync_engine.managers.knowledge import KnowledgeManager
    from difyascode.sync_engine.store.base import HierarchyStore

ProgressCallback = Callable[[str], None]

WRITABLE_ROLES = frozenset({UserRole.OWNER, UserRole.ADMIN, UserRole.EDITOR})


def is_readonly(role: str | None) -> bool:
    """Apps in a workspace where the account cannot edit are pull-only."""
    return role not in WRITABLE_ROLES


class PullReconciler:
    """Pull remote state into the hierarchy store.

    Stateless beyond its references to the store, the gateway sessions and
    the knowledge manager; every public method returns a ``SyncReport``.
    """

    def __init__(self, store: HierarchyStore, sessions: GatewaySessions, knowledge: KnowledgeManager) -> None:
        self._store = store
        self._sessions = sessions
        self._knowledge = knowledge

    # -- Entry points ----------------------------------------------------------

    async def pull_all(self, on_progress: ProgressCallback | None = None) -> SyncReport:
        """Pull every account of every platform, one after another."""
        report = SyncReport()
        for platform in await self._store.list(self._store.root, EntityKind.PLATFORM):
            report.merge(await self.pull_platform(platform.path, on_progress))
        logger.info("Pull finished: {}", report.summary())
        return report

    async def pull_platform(self, platform_path: Path, on_progress: ProgressCallback | None = None) -> SyncReport:
        """Pull every account of one platform.

        A failing account (bad password, unreachable host, unreadable record)
        is recorded and the next account still runs.
        """
        report = SyncReport()
        for account in await self._store.list(platform_path, EntityKind.ACCOUNT):
            email = account.email  # type: ignore[union-attr]
            if on_progress is not None:
                on_progress(f"Pulling {email} on {platform_path.name}")
            try:
                report.merge(await self.pull_account(account.path))
            except (SyncError, OSError) as exc:
                logger.error("Pull of account {} failed: {}", email, exc)
                report.fail("account", email, exc)
        return report

    async def pull_account(self, account_path: Path) -> SyncReport:
        """Pull every workspace the account can see, then drop vanished ones.

        Raises ``AuthenticationError`` when the account cannot log in.
        """
        report = SyncReport()
        gateway = await open_session(self._store, self._sessions, account_path)
        remote_workspaces = await gateway.list_workspaces()
        local_workspaces: list[WorkspaceNode] = await self._store.list(account_path, EntityKind.WORKSPACE)  # type: ignore[assignment]
        local_by_id = {ws.id: ws for ws in local_workspaces}

        seen: set[str] = set()
        for remote in remote_workspaces:
            seen.add(remote.id)
            record = WorkspaceConfig(id=remote.id, name=remote.name, role=remote.role)
            try:
                path, written = await upsert_by_id(self._store, account_path, record, local_by_id.get(remote.id))
                if written:
                    (report.updated if remote.id in local_by_id else report.created).append(path)
                workspace: WorkspaceNode = await self._store.get(path, EntityKind.WORKSPACE)  # type: ignore[assignment]
                report.merge(await self._pull_workspace_contents(gateway, workspace))
            except AuthenticationError:
                raise
            except SyncError as exc:
                logger.warning("Failed to pull workspace {}: {}", remote.name, exc)
                report.fail("workspace", remote.name, exc)

        for workspace_id, local in local_by_id.items():
            if workspace_id not in seen:
                logger.info("Deleting workspace {} (gone remotely)", local.path)
                await self._store.delete(local.path)
                report.deleted.append(local.path)
        return report

    async def pull_workspace(self, workspace_path: Path) -> SyncReport:
        gateway, workspace = await open_workspace_session(self._store, self._sessions, workspace_path)
        return await self._pull_workspace_contents(gateway, workspace, switched=True)

    async def pull_app(self, app_path: Path) -> SyncReport:
        """Re-pull a single app by its remote id.

        Raises ``UnsupportedOperationError`` for apps that were never pushed.
        """
        app: AppNode = await self._store.get(app_path, EntityKind.APP)  # type: ignore[assignment]
        if not app.has_remote_identity:
            msg = f"{app_path} has no remote counterpart yet; push it first"
            raise UnsupportedOperationError(msg)

        workspace_path = layout.workspace_of(app_path)
        gateway, workspace = await open_workspace_session(self._store, self._sessions, workspace_path)
        detail = await gateway.get_app_detail(app.remote_id)
        remote = RemoteApp(id=detail.id, name=detail.name, mode=detail.mode, updated_at=detail.updated_at)

        report = SyncReport()
        await self.reconcile_app(gateway, workspace_path, remote, app, workspace.role, report)
        return report

    # -- Workspace contents ----------------------------------------------------

    async def _pull_workspace_contents(
        self,
        gateway: RemoteGateway,
        workspace: WorkspaceNode,
        *,
        switched: bool = False,
    ) -> SyncReport:
        report = SyncReport()
        if not switched:
            await gateway.switch_workspace(workspace.id)

        report.merge(await self._pull_apps(gateway, workspace))
        datasets = await self._refresh_registries(gateway, workspace.path, report)
        await self._repull_datasets(gateway, workspace.path, datasets, report)
        logger.info("Pulled workspace {}: {}", workspace.name, report.summary())
        return report

    async def _pull_apps(self, gateway: RemoteGateway, workspace: WorkspaceNode) -> SyncReport:
        report = SyncReport()
        try:
            remote_apps = await gateway.list_apps()
        except AuthenticationError:
            raise
        except SyncError as exc:
            logger.warning("Cannot list apps of {}: {}", workspace.name, exc)
            report.fail("apps", workspace.name, exc)
            return report

        local_apps: list[AppNode] = await self._store.list(workspace.path, EntityKind.APP)  # type: ignore[assignment]
        by_id = {app.remote_id: app for app in local_apps if app.has_remote_identity}

        seen: set[str] = set()
        for remote in remote_apps:
            seen.add(remote.id)
            try:
                await self.reconcile_app(gateway, workspace.path, remote, by_id.get(remote.id), workspace.role, report)
            except AuthenticationError:
                raise
            except SyncError as exc:
                logger.warning("Failed to pull app {}: {}", remote.name, exc)
                report.fail("app", remote.name, exc)

        remote_names = _name_keys(a.name for a in remote_apps)
        for local in local_apps:
            if local.has_remote_identity:
                if local.remote_id in seen:
                    continue
                logger.info("Deleting app {} (gone remotely)", local.path)
            elif local.remote_id:
                # Placeholder id: created offline, waiting for its first push.
                continue
            elif local.path.name in remote_names or local.name in remote_names:
                continue
            else:
                logger.info("Deleting orphan app {}", local.path)
            await self._store.delete(local.path)
            report.deleted.append(local.path)
        return report

    async def reconcile_app(
        self,
        gateway: RemoteGateway,
        workspace_path: Path,
        remote: RemoteApp,
        local: AppNode | None,
        role: str | None,
        report: SyncReport,
    ) -> Path:
        """Export one remote app and write it over its local counterpart.

        *local* is the app already holding ``remote.id``, if any.  Nothing is
        written when content and metadata are unchanged.
        """
        export = await gateway.export_app(remote.id)
        metadata = SyncMetadata(
            remote_id=remote.id,
            app_type=remote.app_type,
            role=role,
            readonly=is_readonly(role),
            last_synced_at=datetime.now(UTC),
            remote_updated_at=export.updated_at or remote.updated_at,
            local_hash=compute_hash(export.content),
        )

        wanted = layout.directory_name(remote.name, remote.id)
        fallback = layout.id_suffixed(wanted, remote.id)
        if local is None:
            try:
                path = await self._store.write_app(workspace_path, wanted, export.content, metadata)
            except NameConflictError:
                path = await self._store.write_app(workspace_path, fallback, export.content, metadata)
            logger.debug("Created app {}", path)
            report.created.append(path)
            return path

        path = local.path
        if path.name not in (wanted, layout.sanitize_name(fallback)):
            try:
                path = await self._store.rename(path, wanted)
            except NameConflictError:
                logger.warning("Cannot rename {} to {}: name taken", path, remote.name)

        if path == local.path and await self._app_unchanged(path, export.content, metadata):
            report.unchanged.append(path)
            return path

        await self._store.write_app(workspace_path, path.name, export.content, metadata, replace=True)
        report.updated.append(path)
        return path

    async def _app_unchanged(self, app_path: Path, content: str, metadata: SyncMetadata) -> bool:
        current = await self._store.read_sync_metadata(app_path)
        if current is None or _without_sync_time(current) != _without_sync_time(metadata):
            return False
        try:
            return await self._store.read_app_content(app_path) == content
        except NotFoundLocallyError:
            return False

    # -- Registries ------------------------------------------------------------

    async def _refresh_registries(
        self,
        gateway: RemoteGateway,
        workspace_path: Path,
        report: SyncReport,
    ) -> list[RemoteDataset] | None:
        """Overwrite the flat registry snapshots.  Returns the dataset listing.

        Each registry is independent; one failing endpoint is recorded and the
        others still refresh.  ``None`` means the dataset listing failed.
        """
        fetchers = {
            RegistryKind.MODELS: gateway.list_models,
            RegistryKind.TOOLS: gateway.list_tools,
            RegistryKind.PLUGINS: gateway.list_plugins,
        }
        for kind, fetch in fetchers.items():
            try:
                snapshot = await fetch()
            except AuthenticationError:
                raise
            except SyncError as exc:
                logger.warning("Cannot refresh {} registry of {}: {}", kind, workspace_path.name, exc)
                report.fail("registry", kind.value, exc)
                continue
            await self._write_registry(workspace_path, kind, snapshot, report)

        try:
            datasets = await gateway.list_datasets()
        except AuthenticationError:
            raise
        except SyncError as exc:
            logger.warning("Cannot list knowledge bases of {}: {}", workspace_path.name, exc)
            report.fail("registry", RegistryKind.KNOWLEDGE.value, exc)
            return None

        listing = KnowledgeRegistry(
            datasets=[
                DatasetSummary(
                    id=d.id,
                    name=d.name,
                    description=d.description,
                    document_count=d.document_count,
                    word_count=d.word_count,
                    updated_at=d.updated_at,
                )
                for d in datasets
            ]
        )
        await self._write_registry(workspace_path, RegistryKind.KNOWLEDGE, listing, report)
        return datasets

    async def _write_registry(
        self,
        workspace_path: Path,
        kind: RegistryKind,
        snapshot: RegistrySnapshot,
        report: SyncReport,
    ) -> None:
        try:
            current = await self._store.read_registry(workspace_path, kind)
        except InvalidRecordError as exc:
            logger.warning("Replacing unreadable {} registry: {}", kind, exc)
            current = None

        path = layout.registry_file(workspace_path, kind)
        if current is not None and _without_sync_time(current) == _without_sync_time(snapshot):
            report.unchanged.append(path)
            return

        stamped = snapshot.model_copy(update={"last_synced_at": datetime.now(UTC)})
        await self._store.write_registry(workspace_path, kind, stamped)
        (report.created if current is None else report.updated).append(path)

    # -- Knowledge -------------------------------------------------------------

    async def _repull_datasets(
        self,
        gateway: RemoteGateway,
        workspace_path: Path,
        remote: list[RemoteDataset] | None,
        report: SyncReport,
    ) -> None:
        remote_ids = {d.id for d in remote} if remote is not None else None
        for dataset in await self._store.list(workspace_path, EntityKind.DATASET):
            if not dataset.fully_pulled:  # type: ignore[union-attr]
                continue
            name = dataset.name  # type: ignore[union-attr]
            if remote_ids is not None and dataset.id not in remote_ids:  # type: ignore[union-attr]
                logger.warning("Knowledge base {} is gone remotely; keeping the local copy", dataset.path)
                report.skipped.append(dataset.path)
                continue
            try:
                report.merge(await self._knowledge.pull_dataset(gateway, workspace_path, dataset.id))  # type: ignore[union-attr]
            except AuthenticationError:
                raise
            except SyncError as exc:
                logger.warning("Failed to pull knowledge base {}: {}", name, exc)
                report.fail("dataset", name, exc)


def _without_sync_time(model: SyncMetadata | RegistrySnapshot) -> dict:
    return model.model_dump(mode="json", exclude={"last_synced_at"})


def _name_keys(names: Iterable[str]) -> set[str]:
    """Display names plus their sanitized directory form."""
    keys = set()
    for name in names:
        keys.add(name)
        try:
            keys.add(layout.sanitize_name(name))
        except InvalidNameError:
            continue
    return keys
