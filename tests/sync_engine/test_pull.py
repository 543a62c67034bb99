"""Tests for PullReconciler against the in-memory console."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from difyascode.sync_engine.errors import ErrorKind, RemoteUnavailableError, UnsupportedOperationError
from difyascode.sync_engine.gateway.registry import GatewaySessions
from difyascode.sync_engine.managers import hierarchy
from difyascode.sync_engine.managers.knowledge import KnowledgeManager
from difyascode.sync_engine.managers.pull import PullReconciler, is_readonly
from difyascode.sync_engine.models.entities import SyncMetadata
from difyascode.sync_engine.models.enums import AppType, EntityKind, RegistryKind
from difyascode.sync_engine.status import compute_hash
from difyascode.sync_engine.store.local import LocalHierarchyStore

from fakes import WORKSPACE_ID, FakeGateway


def _dsl(name: str, version: int = 1) -> str:
    return f"app:\n  mode: workflow\n  name: {name}\nversion: {version}\n"


def _read(path: Path) -> str:
    return path.read_text(encoding="utf-8")


# ---------------------------------------------------------------------------
# Account / workspace level
# ---------------------------------------------------------------------------


async def test_pull_account_builds_tree(
    puller: PullReconciler,
    gateway: FakeGateway,
    store: LocalHierarchyStore,
    account_path: Path,
    workspace_path: Path,
) -> None:
    app_id = gateway.add_app(WORKSPACE_ID, "Support Flow", _dsl("Support Flow"), mode="advanced-chat")
    gateway.add_dataset(WORKSPACE_ID, "Handbook")

    report = await puller.pull_account(account_path)

    assert report.ok
    assert workspace_path in report.created
    app_path = workspace_path / "studio" / "Support_Flow"
    assert _read(app_path / "app.yml") == _dsl("Support Flow")

    metadata = await store.read_sync_metadata(app_path)
    assert metadata is not None
    assert metadata.remote_id == app_id
    assert metadata.app_type == AppType.CHATFLOW
    assert metadata.local_hash == compute_hash(_dsl("Support Flow"))
    assert metadata.remote_updated_at == gateway.workspaces[WORKSPACE_ID].apps[app_id].updated_at
    assert metadata.readonly is False

    for kind in RegistryKind:
        assert await store.read_registry(workspace_path, kind) is not None
    listing = yaml.safe_load(_read(workspace_path / "knowledge" / "knowledge.yml"))
    assert [d["name"] for d in listing["datasets"]] == ["Handbook"]
    # Listing a knowledge base does not pull it.
    assert await store.list(workspace_path, EntityKind.DATASET) == []


async def test_pull_is_idempotent(puller: PullReconciler, gateway: FakeGateway, account_path: Path) -> None:
    gateway.add_app(WORKSPACE_ID, "W1", _dsl("W1"))
    gateway.add_app(WORKSPACE_ID, "W2", _dsl("W2"))

    first = await puller.pull_account(account_path)
    assert first.modified > 0

    second = await puller.pull_account(account_path)
    assert second.ok
    assert second.modified == 0
    assert len(second.unchanged) >= 2


async def test_unusable_remote_name_gets_id_directory(
    puller: PullReconciler,
    gateway: FakeGateway,
    account_path: Path,
    workspace_path: Path,
) -> None:
    dots = gateway.add_app(WORKSPACE_ID, "..", _dsl("Dots"))
    gateway.add_app(WORKSPACE_ID, "Sibling", _dsl("Sibling"))

    report = await puller.pull_account(account_path)

    assert report.ok
    studio = workspace_path / "studio"
    assert _read(studio / "Sibling" / "app.yml") == _dsl("Sibling")
    assert _read(studio / f"_{dots[:8]}" / "app.yml") == _dsl("Dots")
    assert not (workspace_path / "app.yml").exists()

    again = await puller.pull_account(account_path)
    assert again.modified == 0


async def test_scenario_workspace_reconcile(
    puller: PullReconciler,
    gateway: FakeGateway,
    account_path: Path,
    workspace_path: Path,
) -> None:
    """Remote {W1, W2}, local {W1, W3}: W1 updated, W2 created, W3 deleted."""
    w1 = gateway.add_app(WORKSPACE_ID, "W1", _dsl("W1"))
    await puller.pull_account(account_path)

    studio = workspace_path / "studio"
    (studio / "W3").mkdir()
    (studio / "W3" / "app.yml").write_text(_dsl("W3"), encoding="utf-8")
    gateway.edit_app(WORKSPACE_ID, w1, content=_dsl("W1", 2))
    gateway.add_app(WORKSPACE_ID, "W2", _dsl("W2"))

    report = await puller.pull_workspace(workspace_path)

    assert studio / "W1" in report.updated
    assert studio / "W2" in report.created
    assert studio / "W3" in report.deleted
    assert _read(studio / "W1" / "app.yml") == _dsl("W1", 2)
    assert not (studio / "W3").exists()


async def test_orphan_kept_when_remote_has_its_name(
    puller: PullReconciler,
    gateway: FakeGateway,
    store: LocalHierarchyStore,
    account_path: Path,
    workspace_path: Path,
) -> None:
    await puller.pull_account(account_path)
    orphan = workspace_path / "studio" / "W3"
    orphan.mkdir()
    (orphan / "app.yml").write_text("local draft", encoding="utf-8")
    w3 = gateway.add_app(WORKSPACE_ID, "W3", _dsl("W3"))

    report = await puller.pull_workspace(workspace_path)

    assert orphan not in report.deleted
    assert orphan.is_dir()
    metadata = await store.read_sync_metadata(orphan)
    assert metadata is not None
    assert metadata.remote_id == w3


async def test_remote_deletion_removes_local(
    puller: PullReconciler,
    gateway: FakeGateway,
    account_path: Path,
    workspace_path: Path,
) -> None:
    keep = gateway.add_app(WORKSPACE_ID, "Keep", _dsl("Keep"))
    gone = gateway.add_app(WORKSPACE_ID, "Gone", _dsl("Gone"))
    await puller.pull_account(account_path)

    del gateway.workspaces[WORKSPACE_ID].apps[gone]
    report = await puller.pull_account(account_path)

    assert workspace_path / "studio" / "Gone" in report.deleted
    assert not (workspace_path / "studio" / "Gone").exists()
    assert keep in gateway.workspaces[WORKSPACE_ID].apps
    assert (workspace_path / "studio" / "Keep" / "app.yml").is_file()


async def test_vanished_workspace_is_deleted(
    puller: PullReconciler,
    gateway: FakeGateway,
    account_path: Path,
    workspace_path: Path,
) -> None:
    gateway.add_workspace("ws-0002-side", "Side")
    await puller.pull_account(account_path)
    assert (account_path / "Side").is_dir()

    del gateway.workspaces["ws-0002-side"]
    report = await puller.pull_account(account_path)

    assert account_path / "Side" in report.deleted
    assert not (account_path / "Side").exists()
    assert workspace_path.is_dir()


async def test_remote_renames_follow_ids(
    puller: PullReconciler,
    gateway: FakeGateway,
    store: LocalHierarchyStore,
    account_path: Path,
    workspace_path: Path,
) -> None:
    app_id = gateway.add_app(WORKSPACE_ID, "Old Name", _dsl("Old"))
    await puller.pull_account(account_path)

    gateway.workspaces[WORKSPACE_ID].info.name = "Renamed"
    gateway.edit_app(WORKSPACE_ID, app_id, name="New Name")
    await puller.pull_account(account_path)

    assert not workspace_path.exists()
    renamed = account_path / "Renamed"
    node = await store.get(renamed, EntityKind.WORKSPACE)
    assert node.id == WORKSPACE_ID
    assert not (renamed / "studio" / "Old_Name").exists()
    metadata = await store.read_sync_metadata(renamed / "studio" / "New_Name")
    assert metadata is not None
    assert metadata.remote_id == app_id


async def test_placeholder_app_survives_pull(
    puller: PullReconciler,
    gateway: FakeGateway,
    store: LocalHierarchyStore,
    account_path: Path,
    workspace_path: Path,
) -> None:
    await puller.pull_account(account_path)
    draft = await store.write_app(workspace_path, "Draft", _dsl("Draft"), SyncMetadata(remote_id="local-abc"))
    remote_id = gateway.add_app(WORKSPACE_ID, "Draft", _dsl("Remote Draft"))

    report = await puller.pull_workspace(workspace_path)

    assert _read(draft / "app.yml") == _dsl("Draft")
    assert draft not in report.deleted
    twin = workspace_path / "studio" / f"Draft_{remote_id[:8]}"
    assert _read(twin / "app.yml") == _dsl("Remote Draft")


async def test_readonly_role(
    puller: PullReconciler,
    gateway: FakeGateway,
    store: LocalHierarchyStore,
    account_path: Path,
) -> None:
    gateway.add_workspace("ws-0003-guest", "Guest", role="normal")
    gateway.add_app("ws-0003-guest", "Shared", _dsl("Shared"))

    await puller.pull_account(account_path)

    metadata = await store.read_sync_metadata(account_path / "Guest" / "studio" / "Shared")
    assert metadata is not None
    assert metadata.readonly is True


@pytest.mark.parametrize(("role", "readonly"), [("owner", False), ("editor", False), ("normal", True), (None, True)])
def test_is_readonly(role: str | None, readonly: bool) -> None:
    assert is_readonly(role) is readonly


# ---------------------------------------------------------------------------
# Failure containment
# ---------------------------------------------------------------------------


async def test_failing_app_does_not_stop_siblings(
    puller: PullReconciler,
    gateway: FakeGateway,
    account_path: Path,
    workspace_path: Path,
) -> None:
    bad = gateway.add_app(WORKSPACE_ID, "Bad", _dsl("Bad"))
    gateway.add_app(WORKSPACE_ID, "Good", _dsl("Good"))
    gateway.failures[f"export_app:{bad}"] = RemoteUnavailableError("export exploded")

    report = await puller.pull_account(account_path)

    assert [(f.scope, f.item) for f in report.failures] == [("app", "Bad")]
    assert (workspace_path / "studio" / "Good" / "app.yml").is_file()
    assert not (workspace_path / "studio" / "Bad").exists()


async def test_registry_failure_is_not_fatal(
    puller: PullReconciler,
    gateway: FakeGateway,
    store: LocalHierarchyStore,
    account_path: Path,
    workspace_path: Path,
) -> None:
    gateway.add_app(WORKSPACE_ID, "W1", _dsl("W1"))
    gateway.failures["list_tools"] = RemoteUnavailableError("tools endpoint down")

    report = await puller.pull_account(account_path)

    assert [(f.scope, f.item, f.kind) for f in report.failures] == [
        ("registry", "tools", ErrorKind.REMOTE_UNAVAILABLE)
    ]
    assert await store.read_registry(workspace_path, RegistryKind.TOOLS) is None
    assert await store.read_registry(workspace_path, RegistryKind.MODELS) is not None
    assert (workspace_path / "studio" / "W1" / "app.yml").is_file()


async def test_auth_failure_is_contained_per_account(
    puller: PullReconciler,
    gateway: FakeGateway,
    store: LocalHierarchyStore,
    sessions: GatewaySessions,
    account_path: Path,
    workspace_path: Path,
) -> None:
    gateway.add_app(WORKSPACE_ID, "W1", _dsl("W1"))
    platform_path = account_path.parent
    ops_path = await hierarchy.add_account(store, sessions, platform_path, "ops@example.com", "wrong", verify=False)

    report = await puller.pull_all()

    assert [(f.scope, f.item, f.kind) for f in report.failures] == [
        ("account", "ops@example.com", ErrorKind.AUTHENTICATION)
    ]
    assert (workspace_path / "studio" / "W1" / "app.yml").is_file()
    assert not (ops_path / "Main").exists()


async def test_pull_all_reports_progress(puller: PullReconciler, account_path: Path) -> None:
    messages: list[str] = []
    await puller.pull_all(on_progress=messages.append)
    assert messages == ["Pulling dev@example.com on Dify"]


async def test_pull_all_without_platforms(
    tmp_path: Path,
    sessions: GatewaySessions,
    knowledge: KnowledgeManager,
) -> None:
    store = LocalHierarchyStore(tmp_path / "empty", secret_key="k")
    report = await PullReconciler(store, sessions, knowledge).pull_all()
    assert report.ok
    assert report.modified == 0


# ---------------------------------------------------------------------------
# Single app and knowledge re-pull
# ---------------------------------------------------------------------------


async def test_pull_single_app(
    puller: PullReconciler,
    gateway: FakeGateway,
    account_path: Path,
    workspace_path: Path,
) -> None:
    app_id = gateway.add_app(WORKSPACE_ID, "W1", _dsl("W1"))
    other = gateway.add_app(WORKSPACE_ID, "W2", _dsl("W2"))
    await puller.pull_account(account_path)

    gateway.edit_app(WORKSPACE_ID, app_id, content=_dsl("W1", 2))
    gateway.edit_app(WORKSPACE_ID, other, content=_dsl("W2", 2))
    report = await puller.pull_app(workspace_path / "studio" / "W1")

    assert report.updated == [workspace_path / "studio" / "W1"]
    assert _read(workspace_path / "studio" / "W1" / "app.yml") == _dsl("W1", 2)
    assert _read(workspace_path / "studio" / "W2" / "app.yml") == _dsl("W2")


async def test_pull_single_app_needs_remote_identity(
    puller: PullReconciler,
    gateway: FakeGateway,
    account_path: Path,
    workspace_path: Path,
) -> None:
    await puller.pull_account(account_path)
    draft = workspace_path / "studio" / "Draft"
    draft.mkdir()
    (draft / "app.yml").write_text(_dsl("Draft"), encoding="utf-8")
    gateway.calls.clear()

    with pytest.raises(UnsupportedOperationError):
        await puller.pull_app(draft)
    assert gateway.calls == []


async def test_fully_pulled_knowledge_is_refreshed(
    puller: PullReconciler,
    knowledge: KnowledgeManager,
    gateway: FakeGateway,
    store: LocalHierarchyStore,
    account_path: Path,
    workspace_path: Path,
) -> None:
    pulled = gateway.add_dataset(WORKSPACE_ID, "Handbook")
    gateway.add_dataset(WORKSPACE_ID, "Listed Only")
    gateway.add_document(pulled, "FAQ", ["Q: why?"])
    await puller.pull_account(account_path)
    await knowledge.pull_dataset(gateway, workspace_path, pulled)

    gateway.add_document(pulled, "Guide", ["Step one."])
    report = await puller.pull_workspace(workspace_path)

    handbook = workspace_path / "knowledge" / "Handbook"
    assert handbook / "Guide.txt" in report.created
    assert _read(handbook / "Guide.txt") == "Step one."
    assert [d.name for d in await store.list(workspace_path, EntityKind.DATASET)] == ["Handbook"]


async def test_knowledge_gone_remotely_is_kept(
    puller: PullReconciler,
    knowledge: KnowledgeManager,
    gateway: FakeGateway,
    account_path: Path,
    workspace_path: Path,
) -> None:
    dataset_id = gateway.add_dataset(WORKSPACE_ID, "Handbook")
    gateway.add_document(dataset_id, "FAQ", ["Q: why?"])
    await puller.pull_account(account_path)
    await knowledge.pull_dataset(gateway, workspace_path, dataset_id)

    del gateway.workspaces[WORKSPACE_ID].datasets[dataset_id]
    report = await puller.pull_workspace(workspace_path)

    handbook = workspace_path / "knowledge" / "Handbook"
    assert handbook in report.skipped
    assert (handbook / "FAQ.txt").is_file()
