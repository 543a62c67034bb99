"""Local entity records.

Each ``*Config`` model is the structured record persisted in an entity's
directory (``.platform.yml``, ``.account.yml``, ...).  Each ``*Node`` model is
what the hierarchy store hands back when enumerating: the record fields plus
the directory it was read from.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Annotated

from pydantic import BaseModel, BeforeValidator, Field

from difyascode.sync_engine.models.enums import AppType, UserRole

LOCAL_ID_PREFIX = "local-"
"""Prefix of placeholder ids assigned to entities created offline."""


def is_placeholder_id(remote_id: str | None) -> bool:
    """True when ``remote_id`` cannot address a remote entity."""
    return not remote_id or not remote_id.strip() or remote_id.startswith(LOCAL_ID_PREFIX)


def _coerce_timestamp(value: object) -> str:
    # Remote timestamps arrive as ISO strings or unix seconds.
    if value is None:
        return ""
    return str(value)


Timestamp = Annotated[str, BeforeValidator(_coerce_timestamp)]
"""Remote watermark, kept verbatim as a string so comparisons are exact."""


# -- Records -----------------------------------------------------------------


class PlatformConfig(BaseModel):
    name: str
    url: str


class AccountConfig(BaseModel):
    email: str


class SecretsConfig(BaseModel):
    """Contents of ``.secrets.yml``.  ``password`` is a Fernet token, never plaintext."""

    password: str | None = None


class WorkspaceConfig(BaseModel):
    id: str
    name: str
    role: UserRole | str = UserRole.NORMAL


class SyncMetadata(BaseModel):
    """Sync watermark for one app or one fully-pulled knowledge base.

    The single source of truth for remote identity and type; the directory
    name is only a display label.
    """

    remote_id: str = ""
    app_type: AppType | None = None
    role: UserRole | str | None = None
    readonly: bool = False
    last_synced_at: datetime | None = None
    remote_updated_at: Timestamp = ""
    local_hash: str = ""


class DatasetConfig(BaseModel):
    id: str
    name: str
    description: str | None = None
    document_count: int = 0
    word_count: int = 0


class DocumentEntry(BaseModel):
    """One document of a knowledge base, as tracked in ``.documents.yml``."""

    remote_id: str
    name: str
    file_name: str
    is_local: bool = False
    content_hash: str = ""
    remote_updated_at: Timestamp = ""


class DocumentManifest(BaseModel):
    last_synced_at: datetime | None = None
    documents: list[DocumentEntry] = Field(default_factory=list)

    def find(self, remote_id: str) -> DocumentEntry | None:
        return next((d for d in self.documents if d.remote_id == remote_id), None)

    def find_by_file(self, file_name: str) -> DocumentEntry | None:
        return next((d for d in self.documents if d.file_name == file_name), None)


# -- Nodes (record + location) -----------------------------------------------


class PlatformNode(PlatformConfig):
    path: Path


class AccountNode(AccountConfig):
    platform_url: str
    path: Path


class WorkspaceNode(WorkspaceConfig):
    path: Path


class AppNode(BaseModel):
    remote_id: str = ""
    name: str
    app_type: AppType = AppType.WORKFLOW
    role: UserRole | str | None = None
    readonly: bool = False
    path: Path

    @property
    def has_remote_identity(self) -> bool:
        return not is_placeholder_id(self.remote_id)


class DatasetNode(DatasetConfig):
    path: Path
    fully_pulled: bool = False
