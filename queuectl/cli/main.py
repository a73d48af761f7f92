"""
queuectl command line.

Thin wrappers around ``queuectl.services``: parse arguments, open a
session, print the result.
"""

import asyncio
import json
import os
import signal
import subprocess
import sys
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import click

from queuectl import __version__, services
from queuectl.cli.registry import WorkerRegistry, is_alive
from queuectl.config import get_settings
from queuectl.constants import JobState
from queuectl.db import close_db, get_session_context, init_db
from queuectl.exceptions import QueueError
from queuectl.observability.logging import setup_logging
from queuectl.types.job import JobRecord
from queuectl.worker.main import run as run_worker

T = TypeVar("T")


def _run(operation: Callable[..., Awaitable[T]], *args: Any) -> T:
    """Run ``operation(session, *args)`` against a freshly opened database."""

    async def runner() -> T:
        await init_db()
        try:
            async with get_session_context() as session:
                return await operation(session, *args)
        finally:
            await close_db()

    try:
        return asyncio.run(runner())
    except QueueError as e:
        raise click.ClickException(str(e)) from e


def _echo_jobs(jobs, empty_message: str) -> None:
    if not jobs:
        click.echo(empty_message)
        return
    for job in jobs:
        click.echo(JobRecord.model_validate(job).model_dump_json())


def _registry() -> WorkerRegistry:
    return WorkerRegistry(get_settings().worker_pidfile)


@click.group(help="queuectl - persistent job queue with workers, retries and a DLQ")
@click.version_option(__version__, prog_name="queuectl")
def cli():
    setup_logging(stream=sys.stderr)


# ---------- Enqueue ----------
@cli.command("enqueue", help="Enqueue a job from a JSON descriptor")
@click.argument("payload")
def enqueue_cmd(payload):
    try:
        request = services.parse_enqueue_payload(payload)
    except QueueError as e:
        raise click.ClickException(str(e)) from e

    job = _run(services.enqueue_job, request)
    click.echo(f"Enqueued job {job.id}")


# ---------- Jobs ----------
@cli.command("list", help="List jobs, oldest first")
@click.option(
    "--state",
    type=click.Choice([state.value for state in JobState]),
    default=None,
    help="Only jobs in this state",
)
@click.option("--limit", type=click.IntRange(min=1), default=None, help="Maximum jobs to show")
def list_cmd(state, limit):
    jobs = _run(services.list_jobs, JobState(state) if state else None, limit)
    _echo_jobs(jobs, "No jobs")


@cli.command("status", help="Show job counts and registered workers")
def status_cmd():
    stats = _run(services.get_status)

    click.echo("Jobs by state:")
    for state, count in stats.items():
        click.echo(f"  {state}: {count}")

    registry = _registry()
    try:
        pids = registry.load()
    except ValueError as e:
        click.secho(str(e), fg="yellow")
        return

    if not pids:
        click.echo("No workers running")
        return

    alive = [pid for pid in pids if is_alive(pid)]
    click.echo(f"Active workers: {len(alive)}/{len(pids)}")
    for index, pid in enumerate(pids, start=1):
        click.echo(f"  worker-{index}: pid {pid} ({'running' if pid in alive else 'exited'})")


# ---------- DLQ ----------
@cli.group("dlq", help="Dead-letter queue")
def dlq_group():
    pass


@dlq_group.command("list", help="List dead jobs")
def dlq_list_cmd():
    _echo_jobs(_run(services.list_dead_jobs), "DLQ empty")


@dlq_group.command("retry", help="Move a dead job back to pending")
@click.argument("job_id")
def dlq_retry_cmd(job_id):
    _run(services.requeue_dead_job, job_id)
    click.secho(f"Moved {job_id} from dead -> pending", fg="green")


# ---------- Config ----------
@cli.group("config", help="Queue configuration")
def config_group():
    pass


@config_group.command("get", help="Show one value, or every value as JSON")
@click.argument("key", required=False)
def config_get_cmd(key):
    values = _run(services.get_config, key)
    if key is None:
        click.echo(json.dumps(values, indent=2))
    else:
        click.echo(values.get(key, "not set"))


@config_group.command("set", help="Set a config value")
@click.argument("key")
@click.argument("value")
def config_set_cmd(key, value):
    stored = _run(services.set_config, key, value)
    click.secho(f"Config {key} = {stored}", fg="green")


# ---------- Workers ----------
@cli.group("worker", help="Worker management")
def worker_group():
    pass


@worker_group.command("start", help="Start worker processes in the background")
@click.option("--count", type=click.IntRange(min=1), default=1, show_default=True)
def worker_start_cmd(count):
    registry = _registry()
    try:
        running = registry.alive_pids()
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    if running:
        raise click.ClickException(
            "Workers appear to be running. Stop them first with 'queuectl worker stop'."
        )
    registry.clear()

    pids = []
    for _ in range(count):
        process = subprocess.Popen(
            [sys.executable, "-m", "queuectl", "worker", "run"],
            stdin=subprocess.DEVNULL,
            start_new_session=True,
        )
        pids.append(process.pid)
        click.echo(f"Started worker pid={process.pid}")

    registry.save(pids)


@worker_group.command("stop", help="Ask registered workers to finish their job and exit")
def worker_stop_cmd():
    registry = _registry()
    if not registry.exists():
        raise click.ClickException("No workers running")

    try:
        pids = registry.load()
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    for pid in pids:
        try:
            os.kill(pid, signal.SIGTERM)
            click.echo(f"Sent SIGTERM to {pid}")
        except ProcessLookupError:
            click.echo(f"Worker {pid} is not running")

    time.sleep(get_settings().worker_stop_grace_seconds)
    registry.clear()
    click.echo("Workers stopped (registry cleared)")


@worker_group.command("run", help="Run one worker in the foreground")
def worker_run_cmd():
    run_worker()


def main():
    cli()
