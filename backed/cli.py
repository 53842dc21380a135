"""CLI tools for BackED administration."""

from uuid import UUID

import click
from sqlalchemy import select

from backed.db.enums import DonationStatus
from backed.db.models import DonationReconciliation, Project
from backed.db.session import SessionLocal
from backed.services import donation_service
from backed.services.funding_ledger_service import (
    FundingLedgerDegradedError,
    ProjectNotFoundError,
    refresh_project_aggregates,
)


@click.group()
def cli():
    """BackED CLI tools."""
    pass


@cli.command()
@click.option("--project-id", default=None, help="Refresh one project (default: all)")
def refresh_aggregates(project_id: str | None):
    """
    Re-sum completed donations into each project's cached aggregates.

    Safe to run at any time: the refresh is idempotent.

    Example:
        python -m backed.cli refresh-aggregates --project-id <uuid>
    """
    db = SessionLocal()
    try:
        if project_id:
            project_ids = [UUID(project_id)]
        else:
            project_ids = list(db.execute(select(Project.id)).scalars())

        refreshed = 0
        for pid in project_ids:
            try:
                totals = refresh_project_aggregates(db, pid)
                db.commit()
                refreshed += 1
                click.echo(f"✓ {pid}: {totals.total_raised} from {totals.backer_count} backers")
            except FundingLedgerDegradedError as e:
                db.rollback()
                click.echo(f"⚠️  {pid}: skipped, {e}")
            except ProjectNotFoundError:
                db.rollback()
                click.echo(f"❌ Project {pid} not found")

        click.echo(f"✓ Refreshed {refreshed} of {len(project_ids)} project(s)")

    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
        raise
    finally:
        db.close()


@cli.command()
@click.option("--all", "show_all", is_flag=True, help="Include resolved records")
def list_reconciliations(show_all: bool):
    """List charges that succeeded without a local donation record."""
    db = SessionLocal()
    try:
        query = select(DonationReconciliation).order_by(DonationReconciliation.created_at)
        if not show_all:
            query = query.where(DonationReconciliation.resolved.is_(False))
        records = list(db.execute(query).scalars())

        if not records:
            click.echo("✓ Nothing to reconcile")
            return

        for r in records:
            state = "resolved" if r.resolved else "OPEN"
            click.echo(
                f"[{state}] {r.id} ref={r.payment_reference} {r.amount} {r.currency} "
                f"project={r.project_id} donor={r.donor_id}"
            )
            click.echo(f"    {r.reason}")
        click.echo(f"{len(records)} record(s)")
    finally:
        db.close()


@cli.command()
@click.option("--reconciliation-id", required=True, help="Reconciliation record to close")
@click.option(
    "--outcome",
    required=True,
    type=click.Choice(["charged", "not-charged"]),
    help="What the gateway reports for the payment reference",
)
def resolve_reconciliation(reconciliation_id: str, outcome: str):
    """
    Close a reconciliation record and release its headroom hold.

    With --outcome charged the completed donation is recorded under the
    original payment reference.

    Example:
        python -m backed.cli resolve-reconciliation --reconciliation-id <uuid> --outcome charged
    """
    db = SessionLocal()
    try:
        donation = donation_service.resolve_reconciliation(
            db, UUID(reconciliation_id), charged=outcome == "charged"
        )
        if donation:
            click.echo(f"✓ Recorded donation {donation.id} ({donation.payment_reference})")
        else:
            click.echo(f"✓ Resolved {reconciliation_id}, hold released")
    except donation_service.DonationServiceError as e:
        db.rollback()
        click.echo(f"❌ {e}")
    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
        raise
    finally:
        db.close()


@cli.command()
@click.option("--donation-id", required=True, help="Donation to correct")
@click.option(
    "--status",
    required=True,
    type=click.Choice([s.value for s in DonationStatus]),
    help="Corrected status",
)
def correct_donation(donation_id: str, status: str):
    """
    Correct a donation's status and re-derive its project's aggregates.

    Example:
        python -m backed.cli correct-donation --donation-id <uuid> --status failed
    """
    db = SessionLocal()
    try:
        donation = donation_service.correct_donation_status(
            db, UUID(donation_id), DonationStatus(status)
        )
        click.echo(f"✓ Donation {donation.id} is now {donation.status}")
    except donation_service.DonationServiceError as e:
        db.rollback()
        click.echo(f"❌ {e}")
    finally:
        db.close()


if __name__ == "__main__":
    cli()
