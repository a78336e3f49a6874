"""CLI tools for resident sync administration."""

import click

from resident_sync.db.enums import JobType
from resident_sync.db.session import SessionLocal
from resident_sync.services import credential_service, event_service, job_service


@click.group()
def cli():
    """Resident sync CLI tools."""
    pass


@cli.command()
@click.option("--company-key", required=True, help="ALIS CompanyKey")
@click.option("--username", required=True, help="ALIS API username")
@click.option("--password", required=True, prompt=True, hide_input=True, help="ALIS API password")
@click.option("--company-name", default=None, help="Display name for a new company")
def upsert_credential(company_key: str, username: str, password: str, company_name: str | None):
    """
    Encrypt and store ALIS credentials for a company.

    Example:
        python -m resident_sync.cli upsert-credential --company-key acme --username api-user
    """
    db = SessionLocal()
    try:
        credential = credential_service.upsert_credentials(
            db,
            company_key=company_key.strip(),
            username=username.strip(),
            password=password,
            company_name=company_name,
        )
        click.echo(f"✓ Stored credentials for {company_key}")
        click.echo(f"  Company ID: {credential.company_id}")
        click.echo(f"  Username: {credential.username}")
    except RuntimeError as e:
        db.rollback()
        raise click.ClickException(str(e))
    finally:
        db.close()


@cli.command()
@click.option("--company-key", required=True, help="ALIS CompanyKey")
@click.option("--community-id", required=True, type=click.IntRange(min=1), help="ALIS CommunityId")
@click.option("--page-size", default=100, show_default=True, type=click.IntRange(1, 500))
def enqueue_backfill(company_key: str, community_id: int, page_size: int):
    """Queue a resident backfill job for one community."""
    db = SessionLocal()
    try:
        event_service.get_or_create_company(db, company_key)
        job = job_service.schedule_job(
            db,
            job_type=JobType.RESIDENT_BACKFILL,
            payload={
                "company_key": company_key,
                "community_id": community_id,
                "page_size": page_size,
            },
        )
        click.echo(f"✓ Queued backfill job {job.id}")
    finally:
        db.close()


@cli.command()
@click.argument("event_message_id")
def requeue_event(event_message_id: str):
    """Send a failed or never-queued event back through the queue."""
    db = SessionLocal()
    try:
        event_log = event_service.get_event(db, event_message_id)
        if event_log is None:
            raise click.ClickException(f"No event with EventMessageId '{event_message_id}'")
        try:
            job = event_service.requeue_event(db, event_log)
        except (ValueError, job_service.EnqueueError) as e:
            raise click.ClickException(str(e))
        click.echo(f"✓ Requeued {event_message_id} as job {job.id}")
    finally:
        db.close()


if __name__ == "__main__":
    cli()
