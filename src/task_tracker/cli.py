"""
Command line entry point for the task tracker.

Commands:
- init-db: create the SQLite schema
- add-owner: register an owner that tasks can reference
- serve: run the HTTP API under uvicorn
- report: print per-owner task digests for a time window as JSON
"""

import json
import logging
import os
import sqlite3
from dataclasses import asdict
from datetime import timezone

import click
import uvicorn

from .config import Settings, configure_logging
from .database import TaskStore
from .errors import TaskValidationError
from .service import TaskService

logger = logging.getLogger(__name__)

OWNER_PAGE_SIZE = 100


def _open_store(ctx: click.Context) -> TaskStore:
    settings: Settings = ctx.obj["settings"]
    return TaskStore(ctx.obj["db_path"], busy_timeout_ms=settings.busy_timeout_ms)


@click.group()
@click.option("--db-path", default=None, help="SQLite database file (default: $DATABASE_PATH)")
@click.pass_context
def main(ctx: click.Context, db_path):
    """Task tracker administration and server commands."""
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings
    ctx.obj["db_path"] = db_path or settings.database_path


@main.command("init-db")
@click.pass_context
def init_db(ctx: click.Context):
    """Create the database schema if it does not exist."""
    with _open_store(ctx):
        pass
    click.echo(f"Database ready at {ctx.obj['db_path']}")


@main.command("add-owner")
@click.argument("email")
@click.pass_context
def add_owner(ctx: click.Context, email: str):
    """Register an owner and print its id."""
    with _open_store(ctx) as store:
        try:
            owner_id = store.create_owner(email)
        except sqlite3.IntegrityError:
            raise click.ClickException(f"Owner with email {email} already exists")
    click.echo(str(owner_id))


@main.command("serve")
@click.option("--host", default=None, help="Bind address (default: $TASK_TRACKER_HOST)")
@click.option("--port", type=int, default=None, help="Bind port (default: $TASK_TRACKER_PORT)")
@click.pass_context
def serve(ctx: click.Context, host, port):
    """Run the HTTP API."""
    settings: Settings = ctx.obj["settings"]
    host = host or settings.host
    port = port or settings.port
    # The app reads its database path from the environment in lifespan
    os.environ["DATABASE_PATH"] = ctx.obj["db_path"]

    logger.info(f"Starting task tracker API on http://{host}:{port}")
    uvicorn.run("task_tracker.api:app", host=host, port=port, log_level=settings.log_level.lower())


@main.command("report")
@click.option("--from", "start", type=click.DateTime(), required=True, help="Window start (UTC, inclusive)")
@click.option("--to", "end", type=click.DateTime(), required=True, help="Window end (UTC, exclusive)")
@click.option("--owner-id", "owner_ids", type=int, multiple=True, help="Limit to these owners")
@click.pass_context
def report(ctx: click.Context, start, end, owner_ids):
    """Print completed-in-window and oldest pending tasks per owner."""
    start = start.replace(tzinfo=timezone.utc)
    end = end.replace(tzinfo=timezone.utc)

    with _open_store(ctx) as store:
        service = TaskService(store)
        if owner_ids:
            unknown = [o for o in owner_ids if not store.owner_exists(o)]
            if unknown:
                raise click.BadParameter(
                    f"Unknown owner id(s): {', '.join(map(str, unknown))}", param_hint="--owner-id"
                )
            batches = [list(owner_ids)]
        else:
            batches = []
            after_id = 0
            while True:
                page = store.list_owner_ids(after_id=after_id, limit=OWNER_PAGE_SIZE)
                if not page:
                    break
                batches.append(page)
                after_id = page[-1]

        reports = []
        try:
            for batch in batches or [[]]:
                reports.extend(service.report(batch, start, end))
        except TaskValidationError as e:
            raise click.BadParameter(e.violations[0].message, param_hint="--from")

    click.echo(json.dumps([asdict(r) for r in reports], indent=2))


if __name__ == "__main__":
    main()
