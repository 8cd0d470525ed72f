#!/usr/bin/env python3
"""
CLI for the Cost Control Engine.

Usage:
    python cli.py cost-control sync PROJECT_ID [--no-recalculate]
    python cli.py cost-control reset PROJECT_ID [--yes]
    python cli.py cost-control recalculate PROJECT_ID
    python cli.py cost-control verify PROJECT_ID
    python cli.py serve --port 8000

Commands:
    cost-control  Synchronize and maintain cost control trees
    initdb        Create the database tables
    serve         Start the API server
"""
import click
import logging

from costcontrol.config import configure_logging, get_config
from costcontrol.cli import register_commands

logger = logging.getLogger(__name__)


@click.group()
@click.version_option(version=get_config().version)
def cli():
    """Cost Control Engine CLI.

    Keep each project's cost control tree in line with its estimate
    and keep parent budgets equal to the sum of their children.
    """
    configure_logging()


@cli.command()
def initdb():
    """Create the database tables."""
    from costcontrol.models import init_db

    init_db()
    click.echo(click.style('✓ Database initialized', fg='green'))


@cli.command()
@click.option('--port', type=int, default=8000, help='Server port')
@click.option('--host', default='0.0.0.0', help='Server host')
@click.option('--reload', is_flag=True, help='Enable auto-reload')
def serve(port: int, host: str, reload: bool):
    """Start the API server.

    Runs the FastAPI application with uvicorn.

    Example:
        python cli.py serve --port 8000 --reload
    """
    import uvicorn

    click.echo(click.style('Cost Control Engine - API Server', fg='cyan', bold=True))
    click.echo(f"Starting server at http://{host}:{port}")
    click.echo("Press CTRL+C to stop\n")

    uvicorn.run(
        "costcontrol.main:app",
        host=host,
        port=port,
        reload=reload
    )


register_commands(cli)


if __name__ == '__main__':
    cli()
