"""
CLI commands for ReplicaChat: Click-based interface.

Commands:
    replicachat start             Start the gateway
    replicachat status            Show configuration and cache status
    replicachat chat              Interactive terminal chat with a replica
    replicachat users list        List users in the upstream directory
    replicachat cache show        Show the local user cache
    replicachat cache clear       Wipe the local user cache
    replicachat cache reconcile   Heal cached ids against the upstream directory
    replicachat replicas list     List replicas (optionally by owner)
    replicachat replicas purge    Delete every replica in the organization
"""

from __future__ import annotations

import asyncio
import sys

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from replicachat.constants import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    PROJECT_DISPLAY_NAME,
    PROJECT_VERSION,
)

console = Console()


@click.group()
@click.version_option(PROJECT_VERSION, prog_name=PROJECT_DISPLAY_NAME)
@click.pass_context
def cli(ctx: click.Context) -> None:
    """ReplicaChat: gateway for hosted replica chatbots."""
    ctx.ensure_object(dict)


def _config(ctx: click.Context):
    """Bootstrap once per invocation and cache the config on the context."""
    obj = ctx.ensure_object(dict)
    if "config" not in obj:
        from replicachat.main import bootstrap

        obj["config"] = bootstrap(json_logs=False)
    return obj["config"]


def _require_secret(config) -> None:
    if not config.upstream.org_secret:
        console.print(
            "[red]REPLICACHAT_UPSTREAM_ORG_SECRET is not set.[/]\n"
            "Set it in .env or your environment."
        )
        sys.exit(1)


def _api_session(config):
    from replicachat.upstream.api import ReplicaAPI
    from replicachat.upstream.client import UpstreamClient

    client = UpstreamClient.from_config(config)
    return client, ReplicaAPI(client)


# ──────────────────────── replicachat start ────────────────────────


@cli.command()
@click.option("--host", default=None, help=f"Host to bind (default: {DEFAULT_HOST})")
@click.option("--port", default=None, type=int, help=f"Port to listen on (default: {DEFAULT_PORT})")
@click.pass_context
def start(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Start the ReplicaChat gateway."""
    import uvicorn

    from replicachat.gateway.app import create_app

    config = _config(ctx)
    _require_secret(config)
    host = host or config.gateway.host
    port = port or config.gateway.port

    if host == "0.0.0.0":
        console.print(
            "[bold red]SECURITY ERROR:[/] Binding to 0.0.0.0 exposes the gateway to the network.\n"
            "Run it behind a reverse proxy instead.",
            style="red",
        )
        sys.exit(1)

    console.print(
        Panel(
            f"[bold green]{PROJECT_DISPLAY_NAME} v{PROJECT_VERSION}[/]\n"
            f"Listening on [cyan]{host}:{port}[/]\n"
            f"Upstream: [cyan]{config.upstream.api_url}[/]\n"
            f"User cache: [dim]{config.cache.user_cache_path}[/]",
            title="Starting ReplicaChat",
            border_style="green",
        )
    )

    uvicorn.run(create_app(config), host=host, port=port, log_level="info")


# ──────────────────────── replicachat status ────────────────────────


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show configuration and local cache status."""
    from replicachat.memory.user_cache import UserCache

    config = _config(ctx)
    cache = UserCache(config.cache.user_cache_path)

    table = Table(title=f"{PROJECT_DISPLAY_NAME} Status")
    table.add_column("Component", style="cyan")
    table.add_column("Status", style="green")

    table.add_row("Version", PROJECT_VERSION)
    table.add_row("Gateway", f"{config.gateway.host}:{config.gateway.port}")
    table.add_row("Upstream", config.upstream.api_url)
    table.add_row("API Version", config.upstream.api_version)
    table.add_row(
        "Org Secret",
        "Configured" if config.upstream.org_secret else "[yellow]Not set[/]",
    )
    table.add_row("User Cache", str(cache.path))
    table.add_row("Cached Users", str(len(cache)))
    table.add_row(
        "User Retry",
        f"{config.retry.user_max_attempts} × {config.retry.user_attempt_timeout_seconds:g}s",
    )
    table.add_row(
        "Replica Retry",
        f"{config.retry.replica_max_attempts} × {config.retry.replica_attempt_timeout_seconds:g}s",
    )

    console.print(table)


# ──────────────────────── replicachat chat ────────────────────────


@cli.command()
@click.option("--email", required=True, help="Email to sign in with")
@click.option("--replica", "replica_uuid", required=True, help="Replica UUID to chat with")
@click.pass_context
def chat(ctx: click.Context, email: str, replica_uuid: str) -> None:
    """Interactive terminal chat with a replica."""
    from replicachat.cli.chat import TerminalChat

    config = _config(ctx)
    _require_secret(config)

    try:
        asyncio.run(TerminalChat(config, email=email, replica_uuid=replica_uuid).run())
    except KeyboardInterrupt:
        console.print("\n[dim]Goodbye![/]")


# ──────────────────────── replicachat users ────────────────────────


@cli.group()
def users() -> None:
    """Inspect the upstream user directory."""


@users.command("list")
@click.pass_context
def users_list(ctx: click.Context) -> None:
    """List users in the upstream directory."""
    from replicachat.upstream.errors import UpstreamError

    config = _config(ctx)
    _require_secret(config)

    async def _run():
        client, api = _api_session(config)
        async with client:
            return await api.list_users()

    try:
        found = asyncio.run(_run())
    except UpstreamError as e:
        console.print(f"[red]Failed to fetch users: {e}[/]")
        sys.exit(1)

    table = Table(title=f"Upstream users ({len(found)})")
    table.add_column("ID", style="cyan")
    table.add_column("Email")
    table.add_column("Created", style="dim")
    table.add_column("Linked", justify="right")
    for user in found:
        table.add_row(
            str(user.get("id", "")),
            str(user.get("email") or "N/A"),
            str(user.get("createdAt") or user.get("created_at") or "N/A"),
            str(len(user.get("linkedAccounts") or [])),
        )
    console.print(table)


# ──────────────────────── replicachat cache ────────────────────────


@cli.group()
def cache() -> None:
    """Manage the local user cache."""


@cache.command("show")
@click.pass_context
def cache_show(ctx: click.Context) -> None:
    """Show every cached user."""
    from replicachat.memory.user_cache import UserCache

    config = _config(ctx)
    entries = UserCache(config.cache.user_cache_path).all()

    table = Table(title=f"Cached users ({len(entries)})")
    table.add_column("ID", style="cyan")
    table.add_column("Email")
    table.add_column("Created", style="dim")
    for user in entries:
        table.add_row(user.id, user.email, user.created_at)
    console.print(table)


@cache.command("clear")
@click.option("--yes", is_flag=True, help="Don't ask for confirmation")
@click.pass_context
def cache_clear(ctx: click.Context, yes: bool) -> None:
    """Wipe the local user cache."""
    from replicachat.memory.user_cache import UserCache
    from replicachat.upstream.errors import PersistenceError

    config = _config(ctx)
    user_cache = UserCache(config.cache.user_cache_path)

    if not yes:
        click.confirm(f"Remove all {len(user_cache)} cached users?", abort=True)

    try:
        user_cache.clear()
    except PersistenceError as e:
        console.print(f"[red]Error clearing user cache: {e}[/]")
        sys.exit(1)
    console.print("[green]User cache cleared.[/]")


@cache.command("reconcile")
@click.pass_context
def cache_reconcile(ctx: click.Context) -> None:
    """Rewrite cached ids that the upstream directory knows under another id."""
    from replicachat.core.reconciler import ReconciliationService
    from replicachat.memory.user_cache import UserCache
    from replicachat.upstream.errors import UpstreamError

    config = _config(ctx)
    _require_secret(config)

    async def _run():
        client, api = _api_session(config)
        async with client:
            service = ReconciliationService(
                api=api,
                cache=UserCache(config.cache.user_cache_path),
                user_policy=config.retry.user_policy,
            )
            return await service.reconcile_cache()

    try:
        stats = asyncio.run(_run())
    except UpstreamError as e:
        console.print(f"[red]Reconciliation failed: {e}[/]")
        sys.exit(1)

    console.print(
        f"Checked [cyan]{stats['checked']}[/], healed [green]{stats['healed']}[/], "
        f"unknown upstream [yellow]{stats['unknown_upstream']}[/]."
    )


# ──────────────────────── replicachat replicas ────────────────────────


@cli.group()
def replicas() -> None:
    """Inspect or clean up replicas."""


@replicas.command("list")
@click.option("--owner", default=None, help="Only replicas owned by this user id")
@click.pass_context
def replicas_list(ctx: click.Context, owner: str | None) -> None:
    """List replicas."""
    from replicachat.upstream.client import normalize_collection
    from replicachat.upstream.errors import UpstreamError

    config = _config(ctx)
    _require_secret(config)

    async def _run():
        client, api = _api_session(config)
        async with client:
            response = await api.list_replicas(owner_id=owner, page_size=100)
        if not response.ok:
            raise UpstreamError(
                f"Failed to list replicas (status {response.status_code})",
                status_code=response.status_code,
            )
        return normalize_collection(response.body, keys=("items",))

    try:
        items = asyncio.run(_run())
    except UpstreamError as e:
        console.print(f"[red]{e}[/]")
        sys.exit(1)

    table = Table(title=f"Replicas ({len(items)})")
    table.add_column("UUID", style="cyan")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Owner", style="dim")
    table.add_column("Model", style="dim")
    for item in items:
        table.add_row(
            str(item.get("uuid", "")),
            str(item.get("name", "")),
            str(item.get("type", "")),
            str(item.get("ownerID", "")),
            str((item.get("llm") or {}).get("model", "")),
        )
    console.print(table)


@replicas.command("purge")
@click.option("--yes", is_flag=True, help="Don't ask for confirmation")
@click.pass_context
def replicas_purge(ctx: click.Context, yes: bool) -> None:
    """Delete every replica in the organization."""
    from replicachat.upstream.client import normalize_collection
    from replicachat.upstream.errors import UpstreamError

    config = _config(ctx)
    _require_secret(config)

    async def _list(api):
        response = await api.list_replicas(page_size=100)
        if not response.ok:
            raise UpstreamError(
                f"Failed to list replicas (status {response.status_code})",
                status_code=response.status_code,
            )
        return normalize_collection(response.body, keys=("items",))

    async def _run():
        client, api = _api_session(config)
        async with client:
            items = await _list(api)
            console.print(f"Found [cyan]{len(items)}[/] replicas")
            if not items:
                return {"deleted": 0, "missing": 0, "failed": 0}
            if not yes and not click.confirm("Delete all of them?"):
                raise click.Abort()
            return await _purge(api, items)

    try:
        stats = asyncio.run(_run())
    except UpstreamError as e:
        console.print(f"[red]{e}[/]")
        sys.exit(1)

    console.print(
        f"Deleted [green]{stats['deleted']}[/], already gone [yellow]{stats['missing']}[/], "
        f"failed [red]{stats['failed']}[/]."
    )


async def _purge(api, items: list[dict]) -> dict[str, int]:
    from replicachat.upstream.errors import UpstreamError

    stats = {"deleted": 0, "missing": 0, "failed": 0}
    for item in items:
        uuid = str(item.get("uuid", ""))
        try:
            response = await api.delete_replica(uuid)
        except UpstreamError as e:
            console.print(f"  [red]✗[/] {item.get('name', '')} ({uuid}): {e}")
            stats["failed"] += 1
            continue

        if response.ok:
            console.print(f"  [green]✓[/] {item.get('name', '')} ({uuid})")
            stats["deleted"] += 1
        elif response.not_found:
            console.print(f"  [yellow]-[/] {item.get('name', '')} ({uuid}) already deleted")
            stats["missing"] += 1
        else:
            console.print(
                f"  [red]✗[/] {item.get('name', '')} ({uuid}): status {response.status_code}"
            )
            stats["failed"] += 1
    return stats
