"""Hierarchy store interface.

The store is the only component that knows how the tree is laid out on
disk.  Everything above it addresses entities by path plus a typed record;
reconcilers never build file names themselves.

The interface is async so the local implementation can push blocking I/O
onto worker threads.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from difyascode.sync_engine.models.entities import (
    AccountConfig,
    AccountNode,
    AppNode,
    DatasetConfig,
    DatasetNode,
    DocumentManifest,
    PlatformConfig,
    PlatformNode,
    SyncMetadata,
    WorkspaceConfig,
    WorkspaceNode,
)
from difyascode.sync_engine.models.enums import EntityKind, RegistryKind
from difyascode.sync_engine.models.registry import RegistrySnapshot

Record = PlatformConfig | AccountConfig | WorkspaceConfig | DatasetConfig
Node = PlatformNode | AccountNode | WorkspaceNode | AppNode | DatasetNode


@runtime_checkable
class HierarchyStore(Protocol):
    """Async protocol over the local entity tree.

    For ``EntityKind.APP`` and ``EntityKind.DATASET`` the *parent* passed to
    ``list`` is the workspace directory; the store resolves the ``studio`` /
    ``knowledge`` container itself.
    """

    @property
    def root(self) -> Path: ...

    # -- Generic CRUD ----------------------------------------------------------

    async def list(self, parent: Path, kind: EntityKind) -> list[Node]:
        """Immediate children of *kind*.  Malformed children are logged and skipped."""
        ...

    async def get(self, path: Path, kind: EntityKind) -> Node:
        """Read one entity.  Raises ``NotFoundLocallyError`` if absent."""
        ...

    async def put(self, parent: Path, record: Record, name: str | None = None, *, replace: bool = False) -> Path:
        """Create or update an entity under *parent*.

        The directory is named after the record's display name unless *name*
        overrides it (used to disambiguate colliding names).  *replace* skips
        the identity check, for callers editing an entity they already hold.

        Raises ``NameConflictError`` when the sanitized name is taken by an
        entity with a different identity.
        """
        ...

    async def rename(self, path: Path, new_name: str) -> Path:
        """Move an entity directory to a new sanitized name, keeping content."""
        ...

    async def delete(self, path: Path) -> None:
        """Remove an entity recursively.  No-op if already absent."""
        ...

    async def kind_of(self, path: Path) -> EntityKind | None:
        """Which kind of entity *path* holds, or ``None`` for anything else."""
        ...

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
        """Write DSL content and its metadata under ``studio/<name>``.

        Raises ``NameConflictError`` when the directory already belongs to an
        app with another remote id, unless *replace* is set.
        """
        ...

    async def read_app_content(self, app_path: Path) -> str:
        """Read the DSL.  Raises ``NotFoundLocallyError`` if missing."""
        ...

    async def read_sync_metadata(self, path: Path) -> SyncMetadata | None: ...

    async def write_sync_metadata(self, path: Path, metadata: SyncMetadata) -> None: ...

    # -- Knowledge -------------------------------------------------------------

    async def read_manifest(self, dataset_path: Path) -> DocumentManifest: ...

    async def write_manifest(self, dataset_path: Path, manifest: DocumentManifest) -> None: ...

    async def document_exists(self, dataset_path: Path, file_name: str) -> bool: ...

    async def read_document(self, dataset_path: Path, file_name: str) -> str: ...

    async def write_document(self, dataset_path: Path, file_name: str, text: str) -> None: ...

    async def delete_document(self, dataset_path: Path, file_name: str) -> None: ...

    # -- Registries ------------------------------------------------------------

    async def write_registry(self, workspace: Path, kind: RegistryKind, snapshot: RegistrySnapshot) -> Path: ...

    async def read_registry(self, workspace: Path, kind: RegistryKind) -> RegistrySnapshot | None: ...

    # -- Secrets ---------------------------------------------------------------

    async def write_secret(self, account: Path, password: str) -> None: ...

    async def read_secret(self, account: Path) -> str | None: ...
