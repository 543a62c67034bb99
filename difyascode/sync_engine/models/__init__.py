"""Data models for the sync engine."""

from difyascode.sync_engine.models.entities import (
    LOCAL_ID_PREFIX,
    AccountConfig,
    AccountNode,
    AppNode,
    DatasetConfig,
    DatasetNode,
    DocumentEntry,
    DocumentManifest,
    PlatformConfig,
    PlatformNode,
    SecretsConfig,
    SyncMetadata,
    WorkspaceConfig,
    WorkspaceNode,
    is_placeholder_id,
)
from difyascode.sync_engine.models.enums import (
    AppType,
    ConflictPolicy,
    EntityKind,
    ModelType,
    PushOutcome,
    RegistryKind,
    ResourceFolder,
    SyncStatus,
    UserRole,
)
from difyascode.sync_engine.models.registry import (
    DatasetSummary,
    KnowledgeRegistry,
    ModelProviderSummary,
    ModelsRegistry,
    ModelSummary,
    PluginsRegistry,
    PluginSummary,
    RegistrySnapshot,
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
from difyascode.sync_engine.models.report import ItemFailure, SyncReport

__all__ = [
    "LOCAL_ID_PREFIX",
    # Records
    "AccountConfig",
    "AccountNode",
    # Remote payloads
    "AppDetail",
    "AppExport",
    "AppNode",
    # Enums
    "AppType",
    "ConflictPolicy",
    "DatasetConfig",
    "DatasetNode",
    # Registries
    "DatasetSummary",
    "DocumentEntry",
    "DocumentManifest",
    "EntityKind",
    "ImportResult",
    # Reports
    "ItemFailure",
    "KnowledgeRegistry",
    "ModelProviderSummary",
    "ModelSummary",
    "ModelType",
    "ModelsRegistry",
    "PlatformConfig",
    "PlatformNode",
    "PluginSummary",
    "PluginsRegistry",
    "PushOutcome",
    "RegistryKind",
    "RegistrySnapshot",
    "RemoteApp",
    "RemoteDataset",
    "RemoteDocument",
    "RemoteSegment",
    "RemoteWorkspace",
    "ResourceFolder",
    "SecretsConfig",
    "SyncMetadata",
    "SyncReport",
    "SyncStatus",
    "ToolItem",
    "ToolParameter",
    "ToolProviderSummary",
    "ToolsRegistry",
    "UserRole",
    "WorkspaceConfig",
    "WorkspaceNode",
    "is_placeholder_id",
]
