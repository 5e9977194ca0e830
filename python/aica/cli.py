"""aica command line.

Entry point: aica.cli:main

Commands that talk to the server (create-org, join, import, sync) need the
organization password, read from a prompt or AICA_PASSWORD. Commands that
only read the local mirror (list, show, search, backup) work offline from
the last synced snapshot.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from aica import __version__
from aica.client.errors import AicaError
from aica.client.mirror import LocalMirror
from aica.client.persistence import SNAPSHOT_KEY, create_default_store, write_file_atomic
from aica.client.remote import RemoteStore, create_http_client
from aica.client.session import VaultSession, validate_slug
from aica.client.sync import SyncProgress
from aica.client.uploader import Uploader, load_export
from aica.config import get_client_settings
from aica.logging import configure_logging

console = Console()

password_option = click.option(
    "--password",
    envvar="AICA_PASSWORD",
    prompt=True,
    hide_input=True,
    help="Organization password (or set AICA_PASSWORD).",
)


def _run(coro):
    """Run a coroutine, turning client errors into a clean CLI failure."""
    try:
        return asyncio.run(coro)
    except AicaError as exc:
        raise click.ClickException(exc.message) from exc


@asynccontextmanager
async def _remote(ctx: click.Context):
    client = create_http_client(ctx.obj["server_url"], ctx.obj["timeout"])
    try:
        yield RemoteStore(client)
    finally:
        await client.aclose()


async def _load_local_mirror(data_dir: Path, slug: str) -> LocalMirror:
    validate_slug(slug)
    store = create_default_store(data_dir / slug)
    try:
        snapshot = await store.load(SNAPSHOT_KEY)
    finally:
        store.close()
    if snapshot is None:
        raise click.ClickException(f"No local data for '{slug}'. Run: aica sync {slug}")
    return LocalMirror.open(snapshot)


def _print_progress(progress: SyncProgress) -> None:
    state = "done" if progress.done else "syncing"
    console.print(
        f"[cyan]{state}[/]: fetched {progress.fetched}, "
        f"decrypted {progress.decrypted}, already synced {progress.duplicates}, "
        f"failed {progress.failed}"
    )


@click.group()
@click.version_option(version=__version__, prog_name="aica")
@click.option("--server", envvar="AICA_SERVER_URL", default=None, help="Blob store URL.")
@click.option(
    "--data-dir", envvar="AICA_DATA_DIR", default=None, type=click.Path(), help="Local data directory."
)
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr.")
@click.pass_context
def main(ctx: click.Context, server: str | None, data_dir: str | None, verbose: bool):
    """Encrypted, shared archive of AI chat conversations."""
    configure_logging(json_format=False, level=logging.DEBUG if verbose else logging.WARNING)

    settings = get_client_settings()
    ctx.ensure_object(dict)
    ctx.obj["server_url"] = (server or settings.normalized_server_url).rstrip("/")
    ctx.obj["data_dir"] = Path(data_dir).expanduser() if data_dir else settings.resolved_data_dir
    ctx.obj["timeout"] = settings.http_timeout_s
    ctx.obj["page_size"] = settings.sync_page_size


@main.command("create-org")
@click.argument("name")
@click.argument("slug")
@click.option(
    "--password",
    envvar="AICA_PASSWORD",
    prompt=True,
    hide_input=True,
    confirmation_prompt=True,
    help="New organization password (or set AICA_PASSWORD).",
)
@click.pass_context
def create_org(ctx: click.Context, name: str, slug: str, password: str):
    """Create an organization and its local vault.

    Examples:

        aica create-org "Acme Research" acme-research
    """

    async def run():
        async with _remote(ctx) as remote:
            session = await VaultSession.create_org(
                remote, name, slug, password, data_dir=ctx.obj["data_dir"]
            )
            session.close()

    _run(run())
    console.print(f"[green]Created organization[/] [bold]{escape(slug)}[/]")


@main.command()
@click.argument("slug")
@password_option
@click.pass_context
def join(ctx: click.Context, slug: str, password: str):
    """Verify the password for an existing organization."""

    async def run() -> int:
        async with _remote(ctx) as remote:
            session = await VaultSession.join(remote, slug, password, data_dir=ctx.obj["data_dir"])
            try:
                return session.mirror.count_conversations()
            finally:
                session.close()

    count = _run(run())
    console.print(f"[green]Unlocked[/] [bold]{escape(slug)}[/] ({count} conversations local)")


@main.command("import")
@click.argument("slug")
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@password_option
@click.pass_context
def import_(ctx: click.Context, slug: str, files: tuple[str, ...], password: str):
    """Encrypt and upload exported conversation JSON files.

    Examples:

        aica import acme-research chatgpt-export.json
    """

    async def run():
        conversations = [c for path in files for c in load_export(path)]
        async with _remote(ctx) as remote:
            session = await VaultSession.join(remote, slug, password)
            try:
                uploader = Uploader(remote, session.credentials, session.keys.encryption_key)
                return await uploader.upload_many(conversations)
            finally:
                session.close()

    summary = _run(run())
    console.print(
        f"[green]Uploaded[/] {summary.created} new, {summary.deduplicated} already present"
    )


@main.command()
@click.argument("slug")
@password_option
@click.pass_context
def sync(ctx: click.Context, slug: str, password: str):
    """Download and decrypt new conversations into the local mirror."""

    async def run() -> int:
        async with _remote(ctx) as remote:
            session = await VaultSession.join(
                remote,
                slug,
                password,
                data_dir=ctx.obj["data_dir"],
                page_size=ctx.obj["page_size"],
            )
            try:
                return await session.sync(_print_progress)
            finally:
                session.close()

    imported = _run(run())
    console.print(f"[green]Synced[/] {imported} conversations")


@main.command("list")
@click.argument("slug")
@click.option("--platform", default=None, help="Only this platform.")
@click.option("--limit", default=50, show_default=True, type=click.IntRange(min=1))
@click.option("--offset", default=0, show_default=True, type=click.IntRange(min=0))
@click.pass_context
def list_(ctx: click.Context, slug: str, platform: str | None, limit: int, offset: int):
    """List synced conversations, newest first."""
    mirror = _run(_load_local_mirror(ctx.obj["data_dir"], slug))
    try:
        rows = mirror.list_conversations(platform=platform, limit=limit, offset=offset)
    finally:
        mirror.close()

    table = Table(title=f"{slug} conversations")
    table.add_column("ID", style="dim")
    table.add_column("Platform")
    table.add_column("Title")
    table.add_column("Messages", justify="right")
    table.add_column("Created")
    for row in rows:
        table.add_row(
            row.id, row.platform, escape(row.title), str(row.message_count), row.created_at
        )
    console.print(table)


@main.command()
@click.argument("slug")
@click.argument("conversation_id")
@click.pass_context
def show(ctx: click.Context, slug: str, conversation_id: str):
    """Print one conversation's messages in order."""
    mirror = _run(_load_local_mirror(ctx.obj["data_dir"], slug))
    try:
        detail = mirror.get_conversation(conversation_id)
    finally:
        mirror.close()

    if detail is None:
        raise click.ClickException(f"Conversation {conversation_id} not found")

    console.print(f"[bold]{escape(detail.title)}[/] [dim]({detail.platform}, {detail.created_at})[/]")
    for message in detail.messages:
        console.print(f"\n[bold cyan]{message.role}[/]")
        console.print(escape(message.content))


@main.command()
@click.argument("slug")
@click.argument("query")
@click.pass_context
def search(ctx: click.Context, slug: str, query: str):
    """Full-text search over synced messages."""
    mirror = _run(_load_local_mirror(ctx.obj["data_dir"], slug))
    try:
        hits = mirror.search_messages(query)
    finally:
        mirror.close()

    if not hits:
        console.print("[dim]No matches[/]")
        return

    for hit in hits:
        snippet = escape(hit.snippet).replace("<mark>", "[bold yellow]").replace("</mark>", "[/]")
        console.print(
            f"[bold]{escape(hit.title)}[/] [dim]{hit.platform} {hit.conversation_id} {hit.role}[/]"
        )
        console.print(f"  {snippet}")


@main.command()
@click.argument("slug")
@click.argument("output", type=click.Path(dir_okay=False))
@click.pass_context
def backup(ctx: click.Context, slug: str, output: str):
    """Write the local mirror database to a file."""
    mirror = _run(_load_local_mirror(ctx.obj["data_dir"], slug))
    try:
        data = mirror.export_snapshot()
    finally:
        mirror.close()

    path = Path(output).expanduser()
    try:
        write_file_atomic(path, data)
    except OSError as exc:
        raise click.ClickException(f"Cannot write {path}: {exc.strerror}") from exc
    console.print(f"[green]Backup written[/] {path} ({len(data)} bytes)")
