"""Push reconciler -- uploads one local app to its remote counterpart.

A push is strict and single-item: it either completes (remote imported,
local content and metadata refreshed from the remote) or fails leaving the
local tree untouched.  Remote drift since the last pull is never resolved
silently; the caller picks a ``ConflictPolicy``.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from difyascode.sync_engine.errors import ConflictError, ImportFailedError, UnsupportedOperationError
from difyascode.sync_engine.managers.hierarchy import open_workspace_session
from difyascode.sync_engine.models.entities import AppNode, SyncMetadata
from difyascode.sync_engine.models.enums import ConflictPolicy, EntityKind, PushOutcome
from difyascode.sync_engine.models.remote import AppDetail, ImportResult, RemoteApp
from difyascode.sync_engine.models.report import SyncReport
from difyascode.sync_engine.store import layout

if TYPE_CHECKING:
    from difyascode.sync_engine.gateway.base import RemoteGateway
    from difyascode.sync_engine.gateway.registry import GatewaySessions
    from difyascode.sync_engine.managers.pull import PullReconciler
    from difyascode.sync_engine.store.base import HierarchyStore


class PushReconciler:
    def __init__(self, store: HierarchyStore, sessions: GatewaySessions, pull: PullReconciler) -> None:
        self._store = store
        self._sessions = sessions
        self._pull = pull

    async def push_app(self, app_path: Path, policy: ConflictPolicy = ConflictPolicy.ABORT) -> PushOutcome:
        """Push the local DSL of one app.

        Apps without a usable remote id are created remotely first.  For
        existing apps the live ``updated_at`` is compared with the recorded
        watermark and a mismatch is handled according to *policy*:

        - ``ABORT`` raises ``ConflictError`` with both timestamps;
        - ``PULL_FIRST`` re-pulls the app instead of pushing;
        - ``CANCEL`` returns without touching anything;
        - ``FORCE`` overwrites the remote.
        """
        app = await self._check_writable(app_path)
        content = await self._store.read_app_content(app_path)
        workspace_path = layout.workspace_of(app_path)
        gateway, workspace = await open_workspace_session(self._store, self._sessions, workspace_path)

        if app.has_remote_identity:
            app_id = app.remote_id
            outcome = PushOutcome.PUSHED
            metadata = await self._store.read_sync_metadata(app_path)
            if metadata is not None:
                detail = await gateway.get_app_detail(app_id)
                if detail.updated_at != metadata.remote_updated_at:
                    resolved = await self._resolve_conflict(app_path, metadata, detail, policy)
                    if resolved is not None:
                        return resolved
        else:
            created = await gateway.create_app(app.name, app.app_type.mode)
            logger.info("Created remote app {} ({}) for {}", created.name, created.id, app_path)
            app_id = created.id
            outcome = PushOutcome.CREATED

        try:
            await self._import(gateway, content, app_id=app_id)
        except ImportFailedError:
            if outcome == PushOutcome.CREATED:
                logger.warning("Remote app {} was created but the import failed; it is left empty", app_id)
            raise

        detail = await gateway.get_app_detail(app_id)
        remote = _as_remote_app(detail)
        await self._pull.reconcile_app(gateway, workspace_path, remote, app, workspace.role, SyncReport())
        logger.info("Pushed {} ({})", app_path, outcome)
        return outcome

    async def copy_app(self, app_path: Path, new_name: str) -> Path:
        """Import the local DSL as a brand-new remote app and pull it next to the original."""
        app = await self._check_writable(app_path)
        content = await self._store.read_app_content(app_path)
        workspace_path = layout.workspace_of(app_path)
        gateway, workspace = await open_workspace_session(self._store, self._sessions, workspace_path)

        result = await self._import(gateway, content, name=new_name)
        if not result.app_id:
            raise ImportFailedError(None, "remote did not report the new app id")

        detail = await gateway.get_app_detail(result.app_id)
        path = await self._pull.reconcile_app(
            gateway, workspace_path, _as_remote_app(detail), None, workspace.role, SyncReport()
        )
        logger.info("Copied {} to {} as {}", app.name, detail.name, path)
        return path

    # -- Helpers ---------------------------------------------------------------

    async def _check_writable(self, app_path: Path) -> AppNode:
        # No network call before these checks.
        app: AppNode = await self._store.get(app_path, EntityKind.APP)  # type: ignore[assignment]
        if not app.app_type.pushable:
            msg = f"{app.app_type} apps cannot be pushed, only workflow and chatflow apps: {app_path}"
            raise UnsupportedOperationError(msg)
        if app.readonly:
            msg = f"{app_path} is read-only for this account"
            raise UnsupportedOperationError(msg)
        return app

    async def _resolve_conflict(
        self,
        app_path: Path,
        metadata: SyncMetadata,
        detail: AppDetail,
        policy: ConflictPolicy,
    ) -> PushOutcome | None:
        """Apply *policy* to remote drift.  ``None`` means go ahead and push."""
        if policy == ConflictPolicy.FORCE:
            logger.warning("Overwriting remote changes to {} (remote updated at {})", app_path, detail.updated_at)
            return None
        if policy == ConflictPolicy.CANCEL:
            logger.info("Push of {} cancelled", app_path)
            return PushOutcome.CANCELLED
        if policy == ConflictPolicy.PULL_FIRST:
            await self._pull.pull_app(app_path)
            return PushOutcome.PULLED_INSTEAD
        raise ConflictError(app_path, metadata.remote_updated_at, detail.updated_at)

    async def _import(
        self,
        gateway: RemoteGateway,
        content: str,
        *,
        app_id: str | None = None,
        name: str | None = None,
    ) -> ImportResult:
        """Two-phase import: a ``pending`` result is confirmed, ``failed`` raises."""
        result = await gateway.import_app(content, app_id=app_id, name=name)
        if result.failed:
            raise ImportFailedError(app_id, result.error)
        if result.pending:
            if not result.import_id:
                raise ImportFailedError(app_id, "pending import without an import id")
            logger.debug("Import {} pending, confirming", result.import_id)
            confirmed = await gateway.confirm_import(result.import_id)
            if confirmed.failed:
                raise ImportFailedError(app_id, confirmed.error)
            result = confirmed if confirmed.app_id else confirmed.model_copy(update={"app_id": result.app_id})
        return result


def _as_remote_app(detail: AppDetail) -> RemoteApp:
    return RemoteApp(id=detail.id, name=detail.name, mode=detail.mode, updated_at=detail.updated_at)
