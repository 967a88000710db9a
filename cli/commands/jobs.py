"""Job Commands - Drive and inspect the queue"""

import json

import typer
from rich.console import Console

from ..client.endpoints import JobQueueClient, JobQueueError
from ..utils.config_manager import config
from ..utils.formatting import (
    create_jobs_table,
    create_pass_panel,
    create_stats_table,
    display_job,
    print_error,
    print_info,
    print_success,
    print_warning,
)

console = Console()
app = typer.Typer(name="jobs", help="Job queue commands")

JOB_STATUSES = ("pending", "running", "completed", "failed", "cancelled")


@app.command("process")
def process_jobs():
    """⚙️ Run one processing pass (same as the cron trigger)"""
    base_url = config.get("api.base_url")

    try:
        with JobQueueClient(base_url) as client:
            print_info("Processing due jobs...")
            run = client.run_pass()
            console.print(create_pass_panel(run))

    except JobQueueError as e:
        print_error(f"Failed to process jobs: {e}")
        raise typer.Exit(1) from None


@app.command("enqueue")
def enqueue_job(
    job_type: str = typer.Argument(..., help="Job type, e.g. send-email"),
    payload: str = typer.Option("{}", "--payload", "-p", help="JSON payload"),
    delay: float | None = typer.Option(
        None, "--delay", "-d", help="Seconds before the job becomes due"
    ),
    max_attempts: int | None = typer.Option(
        None, "--max-attempts", "-m", help="Attempts before the job fails"
    ),
):
    """➕ Enqueue a job"""
    try:
        payload_data = json.loads(payload)
    except json.JSONDecodeError as e:
        print_error(f"Payload must be valid JSON: {e}")
        raise typer.Exit(1) from None

    if delay is not None and delay < 0:
        print_error("Delay must not be negative")
        raise typer.Exit(1)

    base_url = config.get("api.base_url")

    try:
        with JobQueueClient(base_url) as client:
            result = client.enqueue(
                job_type, payload_data, delay=delay, max_attempts=max_attempts
            )
            print_success(f"Job enqueued: {result.get('job_id')}")

    except JobQueueError as e:
        print_error(f"Failed to enqueue job: {e}")
        raise typer.Exit(1) from None


@app.command("stats")
def show_stats():
    """📊 Show job counts by status"""
    base_url = config.get("api.base_url")

    try:
        with JobQueueClient(base_url) as client:
            stats = client.get_stats()
            console.print(create_stats_table(stats))

    except JobQueueError as e:
        print_error(f"Failed to get job stats: {e}")
        raise typer.Exit(1) from None


@app.command("cleanup")
def cleanup_jobs(
    max_age: float | None = typer.Option(
        None, "--max-age", "-a", help="Retention in seconds (server default if omitted)"
    ),
):
    """🧹 Delete old completed and failed jobs"""
    base_url = config.get("api.base_url")

    try:
        with JobQueueClient(base_url) as client:
            result = client.cleanup(max_age)
            print_success(f"Deleted {result.get('deleted_count', 0)} jobs")

    except JobQueueError as e:
        print_error(f"Failed to clean up jobs: {e}")
        raise typer.Exit(1) from None


@app.command("list")
def list_jobs(
    status: str | None = typer.Option(None, "--status", "-s", help="Filter by status"),
    job_type: str | None = typer.Option(None, "--type", "-t", help="Filter by job type"),
    limit: int | None = typer.Option(None, "--limit", "-l", help="Number of jobs"),
    offset: int = typer.Option(0, "--offset", "-o", help="Results offset"),
):
    """📋 List jobs"""
    if status and status not in JOB_STATUSES:
        print_error(f"Status must be one of: {', '.join(JOB_STATUSES)}")
        raise typer.Exit(1)

    base_url = config.get("api.base_url")
    limit = limit or config.get("display.jobs_per_page", 20)

    try:
        with JobQueueClient(base_url) as client:
            result = client.list_jobs(
                status=status, type=job_type, limit=limit, offset=offset
            )
            jobs = result.get("jobs", [])

            if not jobs:
                print_warning("No jobs found")
                return

            console.print(create_jobs_table(jobs))

    except JobQueueError as e:
        print_error(f"Failed to list jobs: {e}")
        raise typer.Exit(1) from None


@app.command("show")
def show_job(job_id: str = typer.Argument(..., help="Job ID")):
    """🔍 Show one job"""
    base_url = config.get("api.base_url")

    try:
        with JobQueueClient(base_url) as client:
            job = client.get_job(job_id)
            display_job(job, show_payload=True)

    except JobQueueError as e:
        print_error(f"Failed to get job: {e}")
        raise typer.Exit(1) from None


@app.command("cancel")
def cancel_job(job_id: str = typer.Argument(..., help="Job ID")):
    """🛑 Cancel a pending or running job"""
    base_url = config.get("api.base_url")

    try:
        with JobQueueClient(base_url) as client:
            client.cancel_job(job_id)
            print_success(f"Job cancelled: {job_id}")

    except JobQueueError as e:
        print_error(f"Failed to cancel job: {e}")
        raise typer.Exit(1) from None
