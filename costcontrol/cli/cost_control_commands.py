"""
Cost Control CLI Commands - Maintenance commands for project cost-control trees.

Provides command-line interface for:
- Synchronizing a project with its estimate
- Resetting (hard-deleting) a project's tree
- Recomputing every parent total
- Verifying tree invariants
"""
import click
import logging

from costcontrol.models import get_db
from costcontrol.domain.exceptions import DomainError
from costcontrol.domain.money import cents_to_display
from costcontrol.domain.services import SyncOrchestrator
from costcontrol.infrastructure.repositories import CostControlRepository

logger = logging.getLogger(__name__)


def _fail(error: DomainError) -> None:
    click.echo(click.style(f"✗ {error.message}", fg='red'))
    raise click.exceptions.Exit(1)


@click.group(name='cost-control')
def cost_control():
    """Cost control synchronization and maintenance commands."""
    pass


@cost_control.command()
@click.argument('project_id')
@click.option('--no-recalculate', is_flag=True, help='Skip recomputing parent totals')
def sync(project_id: str, no_recalculate: bool):
    """Synchronize a project's cost control tree with its estimate."""
    click.echo(f"Synchronizing cost control for project {project_id}...")

    db = next(get_db())
    try:
        result = SyncOrchestrator(db).import_from_estimate(
            project_id, recalculate_parents=False if no_recalculate else None
        )
    except DomainError as e:
        _fail(e)
    finally:
        db.close()

    click.echo(click.style(f"✓ Sync complete for project {project_id}", fg='green'))
    click.echo(f"  Created:      {result.created_count}")
    click.echo(f"  Updated:      {result.updated_count}")
    click.echo(f"  Orphaned:     {result.orphaned_count}")
    click.echo(f"  Deduplicated: {result.deduplicated_count}")
    if result.warning:
        click.echo(click.style(f"  Warning: {result.warning}", fg='yellow'))


@cost_control.command()
@click.argument('project_id')
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
def reset(project_id: str, yes: bool):
    """Permanently delete every cost control item of a project."""
    if not yes:
        click.confirm(
            f"This permanently deletes all cost control items of project {project_id}. Continue?",
            abort=True,
        )

    db = next(get_db())
    try:
        result = SyncOrchestrator(db).reset(project_id)
    except DomainError as e:
        _fail(e)
    finally:
        db.close()

    click.echo(click.style(
        f"✓ Reset project {project_id}: {result.affected_count} items deleted", fg='green'
    ))


@cost_control.command()
@click.argument('project_id')
def recalculate(project_id: str):
    """Recompute every parent total of a project."""
    db = next(get_db())
    try:
        result = SyncOrchestrator(db).recalculate(project_id)
        roots = [i for i in CostControlRepository(db).get_by_project(project_id) if i.parent_id is None]
        total = sum(i.bo_amount_cents for i in roots)
    except DomainError as e:
        _fail(e)
    finally:
        db.close()

    click.echo(click.style(
        f"✓ Recalculated project {project_id}: {result.affected_count} items changed", fg='green'
    ))
    click.echo(f"  Total budget: {cents_to_display(total)}")


@cost_control.command()
@click.argument('project_id')
def verify(project_id: str):
    """Report invariant violations without changing anything."""
    db = next(get_db())
    try:
        result = SyncOrchestrator(db).verify(project_id)
    except DomainError as e:
        _fail(e)
    finally:
        db.close()

    if result.ok:
        click.echo(click.style(
            f"✓ Project {project_id}: {result.affected_count} live items, no violations", fg='green'
        ))
        return

    click.echo(click.style(
        f"✗ Project {project_id}: {len(result.violations)} violations", fg='red'
    ))
    for violation in result.violations:
        click.echo(f"  - [{violation.invariant}] {violation.node_id}: {violation.message}")
    raise click.exceptions.Exit(1)


def register_commands(cli):
    """Register cost control commands with main CLI."""
    cli.add_command(cost_control)
