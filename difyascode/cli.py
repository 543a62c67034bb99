from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import click

if TYPE_CHECKING:
    from difyascode.sync_engine.gateway.registry import GatewaySessions
    from difyascode.sync_engine.managers.knowledge import KnowledgeManager
    from difyascode.sync_engine.managers.pull import PullReconciler
    from difyascode.sync_engine.managers.push import PushReconciler
    from difyascode.sync_engine.models.report import SyncReport
    from difyascode.sync_engine.settings import DifySettings
    from difyascode.sync_engine.store.local import LocalHierarchyStore


@dataclass
class Engine:
    """Everything one command needs, wired from settings."""

    store: LocalHierarchyStore
    sessions: GatewaySessions
    knowledge: KnowledgeManager
    pull: PullReconciler
    push: PushReconciler

    @classmethod
    def from_settings(cls, settings: DifySettings) -> Engine:
        from difyascode.sync_engine.gateway.console import DifyConsoleClient
        from difyascode.sync_engine.gateway.registry import GatewaySessions
        from difyascode.sync_engine.managers.knowledge import KnowledgeManager
        from difyascode.sync_engine.managers.pull import PullReconciler
        from difyascode.sync_engine.managers.push import PushReconciler
        from difyascode.sync_engine.store.local import LocalHierarchyStore

        secret_key = settings.secret_key.get_secret_value() if settings.secret_key else None
        store = LocalHierarchyStore(settings.root.resolve(), secret_key=secret_key)
        sessions = GatewaySessions(
            lambda url: DifyConsoleClient(url, timeout=settings.request_timeout, page_limit=settings.page_limit)
        )
        knowledge = KnowledgeManager(store, settings)
        pull = PullReconciler(store, sessions, knowledge)
        push = PushReconciler(store, sessions, pull)
        return cls(store=store, sessions=sessions, knowledge=knowledge, pull=pull, push=push)


def _run[T](ctx: click.Context, work: Callable[[Engine], Awaitable[T]]) -> T:
    """Run *work* against a fresh engine and map domain errors to CLI errors."""
    from difyascode.sync_engine.errors import SyncError

    engine = Engine.from_settings(ctx.obj)

    async def runner() -> T:
        try:
            return await work(engine)
        finally:
            await engine.sessions.close_all()

    try:
        return asyncio.run(runner())
    except SyncError as exc:
        raise click.ClickException(str(exc)) from exc


def _echo_report(report: SyncReport) -> None:
    click.echo(report.summary())
    for failure in report.failures:
        click.echo(f"  failed {failure.scope} {failure.item}: {failure.message}", err=True)
    if not report.ok:
        raise click.exceptions.Exit(1)


_PATH = click.Path(exists=True, file_okay=False, path_type=Path)


@click.group()
@click.option(
    "--root",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Tree root (default: DIFY_ROOT or .).",
)
@click.option("--log-level", default=None, help="Log level (default: DIFY_LOG_LEVEL or INFO).")
@click.pass_context
def main(ctx: click.Context, root: Path | None, log_level: str | None) -> None:
    """Dify as Code - mirror Dify apps and knowledge into a local tree."""
    from difyascode.sync_engine.log import setup_logging
    from difyascode.sync_engine.settings import get_settings

    settings = get_settings()
    updates = {k: v for k, v in {"root": root, "log_level": log_level}.items() if v is not None}
    if updates:
        settings = settings.model_copy(update=updates)
    setup_logging(settings.log_level)
    ctx.obj = settings


# ---------------------------------------------------------------------------
# Platforms and accounts
# ---------------------------------------------------------------------------


@main.group()
def platform() -> None:
    """Register and remove platforms."""


@platform.command("add")
@click.argument("name")
@click.argument("url")
@click.pass_context
def platform_add(ctx: click.Context, name: str, url: str) -> None:
    """Register a platform NAME served at URL."""
    from difyascode.sync_engine.managers import hierarchy

    path = _run(ctx, lambda e: hierarchy.add_platform(e.store, name, url))
    click.echo(f"Added platform at {path}")


@platform.command("list")
@click.pass_context
def platform_list(ctx: click.Context) -> None:
    """List platforms with their accounts."""
    from difyascode.sync_engine.managers import hierarchy

    tree = _run(ctx, lambda e: hierarchy.list_tree(e.store))
    for node, accounts in tree:
        click.echo(f"{node.name}  {node.url}")
        for account in accounts:
            click.echo(f"  {account.email}")


@platform.command("remove")
@click.argument("name")
@click.confirmation_option(prompt="Delete the platform and everything mirrored under it?")
@click.pass_context
def platform_remove(ctx: click.Context, name: str) -> None:
    from difyascode.sync_engine.managers import hierarchy
    from difyascode.sync_engine.store import layout

    async def work(e: Engine) -> None:
        await hierarchy.delete_platform(e.store, e.sessions, layout.child_path(e.store.root, name))

    _run(ctx, work)
    click.echo(f"Removed platform {name}")


@main.group()
def account() -> None:
    """Register and remove accounts."""


@account.command("add")
@click.argument("platform_name")
@click.argument("email")
@click.password_option()
@click.option("--no-verify", is_flag=True, default=False, help="Store the credentials without a test login.")
@click.pass_context
def account_add(ctx: click.Context, platform_name: str, email: str, password: str, no_verify: bool) -> None:
    """Add EMAIL to PLATFORM_NAME.  The password is stored encrypted."""
    from difyascode.sync_engine.managers import hierarchy
    from difyascode.sync_engine.store import layout

    async def work(e: Engine) -> Path:
        platform_path = layout.child_path(e.store.root, platform_name)
        return await hierarchy.add_account(e.store, e.sessions, platform_path, email, password, verify=not no_verify)

    path = _run(ctx, work)
    click.echo(f"Added account at {path}")


@account.command("password")
@click.argument("platform_name")
@click.argument("email")
@click.password_option()
@click.pass_context
def account_password(ctx: click.Context, platform_name: str, email: str, password: str) -> None:
    """Replace the stored password of an account."""
    from difyascode.sync_engine.managers import hierarchy
    from difyascode.sync_engine.store import layout

    async def work(e: Engine) -> None:
        account_path = layout.child_path(layout.child_path(e.store.root, platform_name), email)
        await hierarchy.update_account_password(e.store, account_path, password)

    _run(ctx, work)
    click.echo("Password updated")


@account.command("remove")
@click.argument("platform_name")
@click.argument("email")
@click.confirmation_option(prompt="Delete the account and everything mirrored under it?")
@click.pass_context
def account_remove(ctx: click.Context, platform_name: str, email: str) -> None:
    from difyascode.sync_engine.managers import hierarchy
    from difyascode.sync_engine.store import layout

    async def work(e: Engine) -> None:
        account_path = layout.child_path(layout.child_path(e.store.root, platform_name), email)
        await hierarchy.delete_account(e.store, account_path)

    _run(ctx, work)
    click.echo(f"Removed account {email}")


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------


@main.command()
@click.argument("path", type=_PATH, required=False)
@click.pass_context
def pull(ctx: click.Context, path: Path | None) -> None:
    """Pull remote changes into PATH.

    PATH may be a platform, account, workspace, app or knowledge base
    directory; without it every platform is pulled.
    """
    from difyascode.sync_engine.errors import UnsupportedOperationError
    from difyascode.sync_engine.managers.hierarchy import open_workspace_session
    from difyascode.sync_engine.models.enums import EntityKind
    from difyascode.sync_engine.store import layout

    async def work(e: Engine) -> SyncReport:
        target = path.resolve() if path else e.store.root
        if target == e.store.root:
            return await e.pull.pull_all(on_progress=click.echo)
        kind = await e.store.kind_of(target)
        if kind == EntityKind.PLATFORM:
            return await e.pull.pull_platform(target, on_progress=click.echo)
        if kind == EntityKind.ACCOUNT:
            return await e.pull.pull_account(target)
        if kind == EntityKind.WORKSPACE:
            return await e.pull.pull_workspace(target)
        if kind == EntityKind.APP:
            return await e.pull.pull_app(target)
        if kind == EntityKind.DATASET:
            dataset = await e.store.get(target, EntityKind.DATASET)
            workspace_path = layout.workspace_of(target)
            gateway, _ = await open_workspace_session(e.store, e.sessions, workspace_path)
            return await e.knowledge.pull_dataset(gateway, workspace_path, dataset.id)  # type: ignore[union-attr]
        msg = f"Not a platform, account, workspace, app or knowledge base directory: {target}"
        raise UnsupportedOperationError(msg)

    _echo_report(_run(ctx, work))


@main.command()
@click.argument("app_path", type=_PATH)
@click.option("--force", "policy", flag_value="force", help="Overwrite remote changes made since the last pull.")
@click.option("--pull-first", "policy", flag_value="pull_first", help="Pull instead when the remote changed.")
@click.pass_context
def push(ctx: click.Context, app_path: Path, policy: str | None) -> None:
    """Push the app at APP_PATH to its remote."""
    from difyascode.sync_engine.errors import ConflictError
    from difyascode.sync_engine.models.enums import ConflictPolicy

    chosen = ConflictPolicy(policy) if policy else ConflictPolicy.ABORT
    try:
        outcome = _run(ctx, lambda e: e.push.push_app(app_path.resolve(), chosen))
    except click.ClickException as exc:
        if not isinstance(exc.__cause__, ConflictError) or policy is not None:
            raise
        click.echo(str(exc.__cause__), err=True)
        answer = click.prompt(
            "Resolve by",
            type=click.Choice(["pull-first", "force", "cancel"]),
            default="cancel",
        )
        chosen = ConflictPolicy(answer.replace("-", "_"))
        outcome = _run(ctx, lambda e: e.push.push_app(app_path.resolve(), chosen))
    click.echo(f"{app_path.name}: {outcome}")


@main.command()
@click.argument("app_path", type=_PATH)
@click.argument("new_name")
@click.pass_context
def copy(ctx: click.Context, app_path: Path, new_name: str) -> None:
    """Create a new remote app NEW_NAME from the local DSL at APP_PATH."""
    path = _run(ctx, lambda e: e.push.copy_app(app_path.resolve(), new_name))
    click.echo(f"Copied to {path}")


@main.command()
@click.argument("path", type=_PATH, required=False)
@click.option("--all", "show_all", is_flag=True, default=False, help="Also list synced entries.")
@click.pass_context
def status(ctx: click.Context, path: Path | None, show_all: bool) -> None:
    """Show local sync status of apps and documents under PATH."""
    from difyascode.sync_engine.models.enums import SyncStatus
    from difyascode.sync_engine.status import collect_status

    lines = _run(ctx, lambda e: collect_status(e.store, path.resolve() if path else e.store.root))
    root = ctx.obj.root.resolve()
    for line in lines:
        if line.status == SyncStatus.SYNCED and not show_all:
            continue
        shown = line.path.relative_to(root) if line.path.is_relative_to(root) else line.path
        click.echo(f"{line.status:<16} {shown}")


# ---------------------------------------------------------------------------
# Knowledge
# ---------------------------------------------------------------------------


@main.group()
def knowledge() -> None:
    """Pull and author knowledge base documents."""


@knowledge.command("pull")
@click.argument("workspace_path", type=_PATH)
@click.argument("dataset")
@click.pass_context
def knowledge_pull(ctx: click.Context, workspace_path: Path, dataset: str) -> None:
    """Pull every document of DATASET (id or name) in WORKSPACE_PATH."""
    from difyascode.sync_engine.managers.hierarchy import open_workspace_session

    async def work(e: Engine) -> SyncReport:
        gateway, _ = await open_workspace_session(e.store, e.sessions, workspace_path.resolve())
        remote = await gateway.list_datasets()
        match = next((d for d in remote if dataset in (d.id, d.name)), None)
        if match is None:
            raise click.ClickException(f"No knowledge base {dataset!r} in {workspace_path}")
        return await e.knowledge.pull_dataset(gateway, workspace_path.resolve(), match.id)

    _echo_report(_run(ctx, work))


@knowledge.command("new")
@click.argument("dataset_path", type=_PATH)
@click.argument("name")
@click.pass_context
def knowledge_new(ctx: click.Context, dataset_path: Path, name: str) -> None:
    """Create an empty local document NAME, pushed later with ``knowledge push``."""
    entry = _run(ctx, lambda e: e.knowledge.create_local_document(dataset_path.resolve(), name))
    click.echo(f"Created {dataset_path / entry.file_name}")


@knowledge.command("push")
@click.argument("dataset_path", type=_PATH)
@click.argument("file_name")
@click.pass_context
def knowledge_push(ctx: click.Context, dataset_path: Path, file_name: str) -> None:
    """Upload FILE_NAME of the knowledge base at DATASET_PATH."""
    from difyascode.sync_engine.managers.hierarchy import open_workspace_session
    from difyascode.sync_engine.store import layout

    async def work(e: Engine):
        target = dataset_path.resolve()
        gateway, _ = await open_workspace_session(e.store, e.sessions, layout.workspace_of(target))
        return await e.knowledge.push_document(gateway, target, file_name)

    entry = _run(ctx, work)
    click.echo(f"Pushed {file_name} as {entry.remote_id}")


@knowledge.command("delete")
@click.argument("dataset_path", type=_PATH)
@click.argument("file_name")
@click.confirmation_option(prompt="Delete the document locally and remotely?")
@click.pass_context
def knowledge_delete(ctx: click.Context, dataset_path: Path, file_name: str) -> None:
    from difyascode.sync_engine.managers.hierarchy import open_workspace_session
    from difyascode.sync_engine.store import layout

    async def work(e: Engine) -> None:
        target = dataset_path.resolve()
        gateway, _ = await open_workspace_session(e.store, e.sessions, layout.workspace_of(target))
        await e.knowledge.delete_document(gateway, target, file_name)

    _run(ctx, work)
    click.echo(f"Deleted {file_name}")


if __name__ == "__main__":
    main()
