"""Flat registry snapshots (models, tools, plugins, knowledge listing).

Each snapshot is fetched in one go and written over the previous file on
success.  They exist locally as a reference for DSL authoring; nothing in the
reconcilers diffs them.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from difyascode.sync_engine.models.enums import ModelType

# -- Models ------------------------------------------------------------------


class ModelSummary(BaseModel):
    model: str
    label: str
    model_type: ModelType | str
    provider: str
    features: list[str] = Field(default_factory=list)
    context_size: int | None = None
    mode: str | None = None
    deprecated: bool = False
    status: str | None = None


class ModelProviderSummary(BaseModel):
    provider: str
    label: str
    status: str = "no-configure"
    models: list[ModelSummary] = Field(default_factory=list)


class ModelsRegistry(BaseModel):
    last_synced_at: datetime | None = None
    default_models: dict[str, str | None] = Field(default_factory=dict)
    providers: list[ModelProviderSummary] = Field(default_factory=list)


# -- Tools -------------------------------------------------------------------


class ToolParameter(BaseModel):
    name: str
    label: str = ""
    description: str | None = None
    type: str = "string"
    required: bool = False


class ToolItem(BaseModel):
    name: str
    label: str = ""
    description: str | None = None
    parameters: list[ToolParameter] = Field(default_factory=list)


class ToolProviderSummary(BaseModel):
    name: str
    author: str = "dify"
    label: str = ""
    type: str = "builtin"
    is_team_authorization: bool = False
    tools: list[ToolItem] = Field(default_factory=list)


class ToolsRegistry(BaseModel):
    last_synced_at: datetime | None = None
    providers: list[ToolProviderSummary] = Field(default_factory=list)


# -- Plugins -----------------------------------------------------------------


class PluginSummary(BaseModel):
    plugin_id: str
    name: str
    label: str = ""
    version: str = ""
    author: str = "unknown"
    category: str = "tool"
    source: str | None = None
    latest_version: str | None = None
    installation_id: str | None = None


class PluginsRegistry(BaseModel):
    last_synced_at: datetime | None = None
    plugins: list[PluginSummary] = Field(default_factory=list)


# -- Knowledge listing -------------------------------------------------------


class DatasetSummary(BaseModel):
    id: str
    name: str
    description: str | None = None
    document_count: int = 0
    word_count: int = 0
    updated_at: str = ""


class KnowledgeRegistry(BaseModel):
    last_synced_at: datetime | None = None
    datasets: list[DatasetSummary] = Field(default_factory=list)


RegistrySnapshot = ModelsRegistry | ToolsRegistry | PluginsRegistry | KnowledgeRegistry
