"""Remote gateway interface.

Everything the reconcilers need from a Dify console, expressed over the
normalised payload models in ``models.remote``.  One gateway instance holds
one authenticated session; the workspace it operates on is whichever was
last passed to ``switch_workspace``.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from difyascode.sync_engine.models.registry import ModelsRegistry, PluginsRegistry, ToolsRegistry
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


@runtime_checkable
class RemoteGateway(Protocol):
    """Async protocol for one console session.

    Implementations raise ``AuthenticationError`` for rejected credentials,
    ``RemoteNotFoundError`` for 404s, and ``RemoteUnavailableError`` for every
    other transport or server failure.
    """

    # -- Session ---------------------------------------------------------------

    async def login(self, email: str, password: str) -> None: ...

    async def logout(self) -> None: ...

    async def aclose(self) -> None: ...

    @property
    def is_authenticated(self) -> bool: ...

    # -- Workspaces ------------------------------------------------------------

    async def list_workspaces(self) -> list[RemoteWorkspace]: ...

    async def switch_workspace(self, workspace_id: str) -> None: ...

    # -- Apps ------------------------------------------------------------------

    async def list_apps(self) -> list[RemoteApp]: ...

    async def get_app_detail(self, app_id: str) -> AppDetail: ...

    async def export_app(self, app_id: str) -> AppExport:
        """Export the DSL together with the app's current ``updated_at``."""
        ...

    async def create_app(self, name: str, mode: str) -> AppDetail: ...

    async def import_app(self, content: str, app_id: str | None = None, name: str | None = None) -> ImportResult:
        """First import phase.  The result may be ``pending``; see ``confirm_import``."""
        ...

    async def confirm_import(self, import_id: str) -> ImportResult: ...

    # -- Knowledge -------------------------------------------------------------

    async def list_datasets(self) -> list[RemoteDataset]: ...

    async def get_dataset(self, dataset_id: str) -> RemoteDataset: ...

    async def list_documents(self, dataset_id: str) -> list[RemoteDocument]: ...

    async def list_segments(self, dataset_id: str, document_id: str) -> list[RemoteSegment]: ...

    async def create_document(self, dataset_id: str, name: str, text: str) -> RemoteDocument: ...

    async def update_document(self, dataset_id: str, document_id: str, name: str, text: str) -> None: ...

    async def delete_document(self, dataset_id: str, document_id: str) -> None: ...

    # -- Registries ------------------------------------------------------------

    async def list_models(self) -> ModelsRegistry: ...

    async def list_tools(self) -> ToolsRegistry: ...

    async def list_plugins(self) -> PluginsRegistry: ...
