"""CLI entry point for cursor-chat-browser."""

import json
import logging

import click
import uvicorn

from .bubbles.grouping import text_record_count
from .config import WORKSPACE_PATH_ENV, resolve_settings
from .exceptions import ChatBrowserError
from .export import records_to_html, records_to_json, records_to_markdown, tab_to_html, tab_to_json, tab_to_markdown
from .recent import (
    METADATA_LEVELS,
    RecentQuery,
    active_to_dict,
    active_to_text,
    find_active_conversation,
    recent_window_size,
)
from .store import RecordStore
from .workspaces import WorkspaceReader


@click.group()
@click.option(
    "--workspace-path",
    envvar=WORKSPACE_PATH_ENV,
    default=None,
    help="Cursor workspaceStorage directory (defaults to the platform location).",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
)
@click.pass_context
def main(ctx: click.Context, workspace_path: str | None, log_level: str):
    """Browse Cursor IDE chat history (read-only)."""
    logging.basicConfig(level=log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    ctx.obj = resolve_settings(workspace_path)


@main.command()
@click.option("--port", default=8080, help="Port to serve on.")
@click.option("--host", default="127.0.0.1", help="Host to bind to.")
@click.pass_obj
def serve(settings, port: int, host: str):
    """Start the web API."""
    from .server import app

    # requests without a workspace cookie fall back to this path
    app.state.workspace_path = str(settings.workspace_path)
    click.echo(f"Starting cursor-chat-browser on http://{host}:{port}")
    click.echo(f"Reading workspaces from {settings.workspace_path}")
    uvicorn.run(app, host=host, port=port, reload=False)


@main.command()
@click.pass_obj
def workspaces(settings):
    """List workspaces with their chat and composer counts."""
    found = WorkspaceReader(settings).list_workspaces()
    if not found:
        click.echo(f"No workspaces found in {settings.workspace_path}")
        return
    for ws in found:
        click.echo(f"{ws.id}  chats={ws.chat_count}  composers={ws.composer_count}  {ws.folder or '-'}")


def _print_active(active, query: RecentQuery, fmt: str):
    if active is None:
        raise click.ClickException("No active conversation found")
    if fmt == "text":
        click.echo(active_to_text(active, query))
    else:
        click.echo(json.dumps(active_to_dict(active, query), indent=2, ensure_ascii=False, default=str))


@main.command()
@click.option("--format", "fmt", type=click.Choice(["json", "text"]), default="text", show_default=True)
@click.pass_obj
def active(settings, fmt: str):
    """Show the conversation currently being worked on."""
    query = RecentQuery(include_empty=True, metadata_level="basic")
    try:
        with RecordStore(settings.global_db_path) as store:
            conversation = find_active_conversation(store, query, windowed=False)
    except ChatBrowserError as e:
        raise click.ClickException(str(e)) from e
    _print_active(conversation, query, fmt)


@main.command()
@click.option("--limit", type=click.IntRange(1, 50), default=10, show_default=True)
@click.option("--since", default=None, help="ISO timestamp or bubble id.")
@click.option("--format", "fmt", type=click.Choice(["json", "text"]), default="text", show_default=True)
@click.option("--include-empty", is_flag=True, help="Keep records with no text.")
@click.option("--metadata-level", type=click.Choice(METADATA_LEVELS), default="full", show_default=True)
@click.option("--basic", is_flag=True, help="Pick the conversation by text bubble count.")
@click.pass_obj
def recent(settings, limit, since, fmt, include_empty, metadata_level, basic):
    """Show the most recent messages of the active conversation."""
    query = RecentQuery(limit=limit, since=since, include_empty=include_empty, metadata_level=metadata_level)
    try:
        with RecordStore(settings.global_db_path) as store:
            if basic:
                conversation = find_active_conversation(
                    store, query, recent_window_size(limit, 5, 500), scorer=text_record_count
                )
            else:
                conversation = find_active_conversation(store, query, recent_window_size(limit, 20, 1000))
    except ChatBrowserError as e:
        raise click.ClickException(str(e)) from e
    _print_active(conversation, query, fmt)


@main.command()
@click.argument("query")
@click.option("--type", "kind", type=click.Choice(["all", "chat", "composer"]), default="all", show_default=True)
@click.pass_obj
def search(settings, query: str, kind: str):
    """Search chat tabs and composers for QUERY."""
    hits = WorkspaceReader(settings).search(query, kind)
    if not hits:
        click.echo("No matches.")
        return
    for hit in hits:
        click.echo(f"[{hit.type}] {hit.chat_title} ({hit.workspace_id}/{hit.chat_id})")
        click.echo(f"    {hit.matching_text}")


@main.command()
@click.argument("chat_id")
@click.option("--workspace", "workspace_id", default=None, help="Workspace id; exports a chat tab instead of a composer.")
@click.option("--format", "fmt", type=click.Choice(["md", "json", "html"]), default="md", show_default=True)
@click.option("-o", "--output", type=click.Path(dir_okay=False, writable=True), default=None)
@click.pass_obj
def export(settings, chat_id: str, workspace_id: str | None, fmt: str, output: str | None):
    """Export a composer (or, with --workspace, a chat tab) to a file or stdout."""
    reader = WorkspaceReader(settings)
    try:
        if workspace_id:
            tab = reader.get_tab(workspace_id, chat_id)
            if tab is None:
                raise click.ClickException(f"Chat tab not found: {chat_id}")
            render = {"md": tab_to_markdown, "json": tab_to_json, "html": tab_to_html}[fmt]
            content = render(tab)
        else:
            found = reader.get_composer(chat_id)
            if found is None:
                raise click.ClickException(f"Composer not found: {chat_id}")
            composer, records = found
            if fmt == "json":
                content = records_to_json(composer.id, composer.title, records)
            elif fmt == "html":
                content = records_to_html(composer.title, records)
            else:
                content = records_to_markdown(composer.title, records)
    except ChatBrowserError as e:
        raise click.ClickException(str(e)) from e

    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(content)
        click.echo(f"Wrote {output}")
    else:
        click.echo(content)
