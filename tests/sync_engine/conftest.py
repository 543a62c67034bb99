"""Shared fixtures for sync engine tests.

Reconcilers run against ``FakeGateway``, an in-memory console that keeps
apps, knowledge bases and registries per workspace.  The hierarchy store is
the real ``LocalHierarchyStore`` on ``tmp_path``.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from difyascode.sync_engine.gateway.registry import GatewaySessions
from difyascode.sync_engine.managers import hierarchy
from difyascode.sync_engine.managers.knowledge import KnowledgeManager
from difyascode.sync_engine.managers.pull import PullReconciler
from difyascode.sync_engine.managers.push import PushReconciler
from difyascode.sync_engine.settings import DifySettings
from difyascode.sync_engine.store.local import LocalHierarchyStore

from fakes import EMAIL, PASSWORD, PLATFORM_URL, WORKSPACE_ID, FakeGateway


@pytest.fixture
def store(tmp_path: Path) -> LocalHierarchyStore:
    return LocalHierarchyStore(tmp_path / "tree", secret_key="test-secret-key")


@pytest.fixture
def gateway() -> FakeGateway:
    gw = FakeGateway()
    gw.add_workspace(WORKSPACE_ID, "Main")
    return gw


@pytest.fixture
def sessions(gateway: FakeGateway) -> GatewaySessions:
    return GatewaySessions(lambda url: gateway)


@pytest.fixture
def settings() -> DifySettings:
    return DifySettings(_env_file=None, segment_overlap=20, min_segment_overlap=3)


@pytest.fixture
def knowledge(store: LocalHierarchyStore, settings: DifySettings) -> KnowledgeManager:
    return KnowledgeManager(store, settings)


@pytest.fixture
def puller(store: LocalHierarchyStore, sessions: GatewaySessions, knowledge: KnowledgeManager) -> PullReconciler:
    return PullReconciler(store, sessions, knowledge)


@pytest.fixture
def pusher(store: LocalHierarchyStore, sessions: GatewaySessions, puller: PullReconciler) -> PushReconciler:
    return PushReconciler(store, sessions, puller)


@pytest.fixture
async def account_path(store: LocalHierarchyStore, sessions: GatewaySessions) -> Path:
    """A registered platform with one account whose password is stored."""
    platform_path = await hierarchy.add_platform(store, "Dify", f"{PLATFORM_URL}/apps")
    return await hierarchy.add_account(store, sessions, platform_path, EMAIL, PASSWORD, verify=False)


@pytest.fixture
def workspace_path(account_path: Path) -> Path:
    """Where the ``Main`` workspace lands once pulled."""
    return account_path / "Main"
