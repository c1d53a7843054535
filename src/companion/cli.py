"""CLI interface for companion."""

from __future__ import annotations

import json
import logging
import shutil
import sys

import click

from . import __version__
from .config import (
    DATA_DIR,
    LOG_FORMAT,
    LOG_LEVEL,
    SESSION_TTL_HOURS,
    SQLITE_PATH,
)


@click.group()
@click.version_option(version=__version__, prog_name="companion")
def cli():
    """companion: a daily chat companion with crisis screening.

    Run the HTTP API for the web client, or the MCP server to talk to the
    companion from a desktop assistant.
    """
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT, stream=sys.stderr)


@cli.command("init-db")
def init_db():
    """Create the database tables."""
    from .storage import ConversationStore

    ConversationStore(SQLITE_PATH).close()
    click.echo(f"Database ready at {SQLITE_PATH}")


@cli.command("issue-token")
@click.argument("owner_id")
@click.option(
    "--ttl-hours",
    default=SESSION_TTL_HOURS,
    show_default=True,
    help="Hours until the token expires",
)
def issue_token(owner_id: str, ttl_hours: int):
    """Issue a bearer session token for OWNER_ID.

    Send it as `Authorization: Bearer <token>` or in the session_token cookie.
    """
    from .errors import CompanionError
    from .storage import ConversationStore

    store = ConversationStore(SQLITE_PATH)
    try:
        token = store.create_session(owner_id, ttl_hours=ttl_hours)
    except CompanionError as e:
        raise click.ClickException(e.message) from e
    finally:
        store.close()
    click.echo(token)


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
def http(host: str, port: int):
    """Start the HTTP API used by the web client."""
    import uvicorn

    from .api import create_app
    from .policy import PolicyError

    try:
        app = create_app()
    except PolicyError as e:
        raise click.ClickException(str(e)) from e

    uvicorn.run(app, host=host, port=port, log_level=LOG_LEVEL.lower())


@cli.command()
def serve():
    """Start the MCP server (stdio transport).

    This is used by MCP clients to talk to the companion. You usually
    don't need to run this manually.
    """
    from .config import LOCAL_OWNER_ID

    if not LOCAL_OWNER_ID:
        click.echo(
            "Warning: COMPANION_OWNER_ID is not set; every tool call will be refused.",
            err=True,
        )

    from .server import mcp

    mcp.run(transport="stdio")


@cli.command()
def stats():
    """Show statistics about stored conversations."""
    if not SQLITE_PATH.exists():
        click.echo("No data found. Create the database first:")
        click.echo("  companion init-db")
        return

    from .storage import ConversationStore

    store = ConversationStore(SQLITE_PATH)
    s = store.get_stats()
    store.close()

    click.echo()
    click.echo(click.style("Companion Statistics", bold=True))
    click.echo(f"  Users:          {s['total_owners']:,}")
    click.echo(f"  Conversations:  {s['total_conversations']:,}")
    click.echo(f"  Messages:       {s['total_messages']:,}")
    click.echo(f"  Avg msgs/conv:  {s['avg_messages_per_conversation']}")
    click.echo(f"  Crisis flags:   {s['crisis_flags']:,}")
    if s["date_range_start"]:
        click.echo(f"  Date range:     {s['date_range_start']} → {s['date_range_end']}")

    db_size = SQLITE_PATH.stat().st_size
    click.echo(f"  Storage:        {db_size / (1024 * 1024):.1f} MB")
    click.echo(f"  Location:       {DATA_DIR}")
    click.echo()


@cli.command()
def config():
    """Print the MCP client configuration snippet."""
    companion_path = shutil.which("companion")
    command = companion_path or "uvx"
    args = ["serve"] if companion_path else ["--from", "companion-chat", "companion", "serve"]

    desktop_config = {
        "mcpServers": {
            "companion": {
                "command": command,
                "args": args,
                "env": {
                    "COMPANION_OWNER_ID": "<your user id>",
                    "GROQ_API_KEY": "<your Groq API key>",
                },
            }
        }
    }

    click.echo()
    click.echo(click.style("MCP client", bold=True))
    click.echo("Add this to your MCP client's config file:")
    click.echo()
    click.echo(json.dumps(desktop_config, indent=2))
    click.echo()


@cli.command()
@click.confirmation_option(prompt="This will delete all conversations. Are you sure?")
def reset():
    """Delete all stored data and start fresh."""
    if DATA_DIR.exists():
        shutil.rmtree(DATA_DIR)
        click.echo(f"Deleted {DATA_DIR}")
    else:
        click.echo("No data to delete.")
