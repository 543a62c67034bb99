"""Shared enumerations used across the sync engine."""

from __future__ import annotations

from enum import StrEnum

# -- Apps --------------------------------------------------------------------


class AppType(StrEnum):
    """Local app type label.  Derived from the remote ``mode``."""

    CHATBOT = "chatbot"
    TEXT_GENERATION = "text-generation"
    AGENT = "agent"
    CHATFLOW = "chatflow"
    WORKFLOW = "workflow"

    @classmethod
    def from_mode(cls, mode: str | None) -> AppType:
        """Map a remote app mode to its local type.  Unknown modes are workflows."""
        return APP_MODE_TO_TYPE.get(mode or "", cls.WORKFLOW)

    @property
    def mode(self) -> str:
        """Remote mode string for this type."""
        return APP_TYPE_TO_MODE[self]

    @property
    def pushable(self) -> bool:
        """Only DSL-importable types can be pushed."""
        return self in (AppType.WORKFLOW, AppType.CHATFLOW)


APP_MODE_TO_TYPE: dict[str, AppType] = {
    "chat": AppType.CHATBOT,
    "completion": AppType.TEXT_GENERATION,
    "agent-chat": AppType.AGENT,
    "advanced-chat": AppType.CHATFLOW,
    "workflow": AppType.WORKFLOW,
}

APP_TYPE_TO_MODE: dict[AppType, str] = {v: k for k, v in APP_MODE_TO_TYPE.items()}


class UserRole(StrEnum):
    OWNER = "owner"
    ADMIN = "admin"
    EDITOR = "editor"
    NORMAL = "normal"
    DATASET_OPERATOR = "dataset_operator"
    VIEWER = "viewer"


# -- Sync --------------------------------------------------------------------


class SyncStatus(StrEnum):
    SYNCED = "synced"
    LOCAL_MODIFIED = "local-modified"
    REMOTE_MODIFIED = "remote-modified"


class ConflictPolicy(StrEnum):
    """What a push does when the remote moved past the local watermark."""

    ABORT = "abort"
    PULL_FIRST = "pull_first"
    FORCE = "force"
    CANCEL = "cancel"


class PushOutcome(StrEnum):
    PUSHED = "pushed"
    CREATED = "created"
    PULLED_INSTEAD = "pulled_instead"
    CANCELLED = "cancelled"


# -- Store -------------------------------------------------------------------


class EntityKind(StrEnum):
    """Kinds of entity the hierarchy store can enumerate."""

    PLATFORM = "platform"
    ACCOUNT = "account"
    WORKSPACE = "workspace"
    APP = "app"
    DATASET = "dataset"


class ResourceFolder(StrEnum):
    """Fixed sub-containers of a workspace."""

    STUDIO = "studio"
    KNOWLEDGE = "knowledge"
    TOOLS = "tools"
    PLUGINS = "plugins"
    MODELS = "models"


class RegistryKind(StrEnum):
    """Flat registry snapshots refreshed at workspace scope."""

    MODELS = "models"
    TOOLS = "tools"
    PLUGINS = "plugins"
    KNOWLEDGE = "knowledge"

    @property
    def folder(self) -> ResourceFolder:
        return ResourceFolder(self.value)


class ModelType(StrEnum):
    LLM = "llm"
    TEXT_EMBEDDING = "text-embedding"
    RERANK = "rerank"
    SPEECH2TEXT = "speech2text"
    TTS = "tts"
    MODERATION = "moderation"
