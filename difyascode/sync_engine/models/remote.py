"""Remote-side payloads returned by the gateway.

These are normalised views of the console API responses; the gateway is
responsible for mapping raw JSON into them so reconcilers never touch
response shapes directly.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from difyascode.sync_engine.models.entities import Timestamp
from difyascode.sync_engine.models.enums import AppType


class RemoteWorkspace(BaseModel):
    id: str
    name: str
    role: str = "normal"
    current: bool = False


class RemoteApp(BaseModel):
    id: str
    name: str
    mode: str = "workflow"
    updated_at: Timestamp = ""

    @property
    def app_type(self) -> AppType:
        return AppType.from_mode(self.mode)


class AppDetail(BaseModel):
    id: str
    name: str
    mode: str = "workflow"
    updated_at: Timestamp = ""


class AppExport(BaseModel):
    content: str
    updated_at: Timestamp = ""


class ImportResult(BaseModel):
    """Outcome of one import phase.

    ``status`` is ``completed``, ``completed-with-warnings``, ``pending`` (the
    remote wants a confirm because of a DSL version mismatch) or ``failed``.
    """

    import_id: str | None = None
    app_id: str | None = None
    status: str = "completed"
    error: str | None = None

    @property
    def pending(self) -> bool:
        return self.status == "pending"

    @property
    def failed(self) -> bool:
        return self.status == "failed"


class RemoteDataset(BaseModel):
    id: str
    name: str
    description: str | None = None
    provider: str = "vendor"
    permission: str = "only_me"
    indexing_technique: str | None = None
    app_count: int = 0
    document_count: int = 0
    word_count: int = 0
    updated_at: Timestamp = ""


class RemoteDocument(BaseModel):
    id: str
    name: str
    word_count: int = 0
    indexing_status: str | None = None
    enabled: bool = True
    updated_at: Timestamp = ""


class RemoteSegment(BaseModel):
    id: str = ""
    position: int
    content: str
    keywords: list[str] = Field(default_factory=list)
    answer: str | None = None
