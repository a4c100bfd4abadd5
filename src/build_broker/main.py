"""CLI entrypoint for build-broker."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from decimal import Decimal

import rich_click as click
from rich.console import Console
from rich.logging import RichHandler

from build_broker import __version__
from build_broker.orchestrator.controllers import (
    BuildBrokerCliController,
    BuildEventsCommand,
    BuildTransitionCommand,
    DbInitCommand,
    HireCreateCommand,
    HireShowCommand,
    JobsListCommand,
    JobsRequeueCommand,
    JobsRetryCommand,
    PitchAddCommand,
    RequestAddCommand,
    WorkerRunCommand,
)
from build_broker.orchestrator.errors import BuildBrokerError
from build_broker.orchestrator.models import Actor, BuildStatus, JobStatus
from build_broker.settlement.base import CENT

click.rich_click.USE_MARKDOWN = True
CONTROLLER = BuildBrokerCliController()
console = Console(stderr=True)

DATABASE_URL_OPTION = click.option(
    "--database-url",
    default=None,
    help="SQLAlchemy database URL (defaults to BUILD_BROKER_DATABASE_URL).",
)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rich handler."""

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[
            RichHandler(console=console, rich_tracebacks=True, show_path=False, show_time=False),
        ],
        force=True,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("alembic").setLevel(logging.WARNING)


@click.group()
@click.version_option(version=__version__, prog_name="build-broker")
@click.option("--verbose", is_flag=True, help="Enable debug logging.")
def build_broker(verbose: bool) -> None:
    """Escrow-gated build job orchestrator."""

    setup_logging(verbose)


@build_broker.group()
def db() -> None:
    """Database commands."""


@db.command("init")
@DATABASE_URL_OPTION
def db_init(database_url: str | None) -> None:
    """Apply schema migrations up to head."""

    with _domain_errors():
        _emit_lines(CONTROLLER.init_db(DbInitCommand(database_url=database_url)))


@build_broker.group()
def request() -> None:
    """Minimal request and pitch rows read by the hire flow."""


@request.command("add")
@DATABASE_URL_OPTION
@click.option("--requester-id", required=True, help="Requester user id.")
@click.option("--requester-wallet", required=True, help="Wallet refunds are paid to.")
@click.option("--title", required=True, help="Request title.")
@click.option("--description", default="", help="Request description.")
def request_add(
    database_url: str | None,
    requester_id: str,
    requester_wallet: str,
    title: str,
    description: str,
) -> None:
    """Register an open request."""

    with _domain_errors():
        _emit_lines(
            CONTROLLER.add_request(
                RequestAddCommand(
                    database_url=database_url,
                    requester_id=requester_id,
                    requester_wallet=requester_wallet,
                    title=title,
                    description=description,
                ),
            ),
        )


@request.command("pitch")
@DATABASE_URL_OPTION
@click.option("--request-id", required=True, help="Request id.")
@click.option("--agent-wallet", required=True, help="Wallet payouts are sent to.")
@click.option("--price", required=True, help="Pitch price, for example 100.00.")
@click.option("--agent-id", default=None, help="Internal agent id (built by workers).")
@click.option("--agent-name", default=None, help="External agent display name.")
def request_pitch(  # noqa: PLR0913
    database_url: str | None,
    request_id: str,
    agent_wallet: str,
    price: str,
    agent_id: str | None,
    agent_name: str | None,
) -> None:
    """Add an agent pitch to a request."""

    with _domain_errors():
        _emit_lines(
            CONTROLLER.add_pitch(
                PitchAddCommand(
                    database_url=database_url,
                    request_id=request_id,
                    agent_wallet=agent_wallet,
                    price=_parse_price(price),
                    agent_id=agent_id,
                    agent_name=agent_name,
                ),
            ),
        )


@build_broker.group()
def hire() -> None:
    """Hire commands."""


@hire.command("create")
@DATABASE_URL_OPTION
@click.option("--request-id", required=True, help="Request id.")
@click.option("--pitch-id", required=True, help="Pitch to hire.")
@click.option("--deposit-reference", required=True, help="Settlement reference of the deposit.")
@click.option("--requester-id", default=None, help="Optional ownership check.")
def hire_create(
    database_url: str | None,
    request_id: str,
    pitch_id: str,
    deposit_reference: str,
    requester_id: str | None,
) -> None:
    """Verify the deposit and hire a pitch."""

    with _domain_errors():
        _emit_lines(
            CONTROLLER.create_hire(
                HireCreateCommand(
                    database_url=database_url,
                    request_id=request_id,
                    pitch_id=pitch_id,
                    deposit_reference=deposit_reference,
                    requester_id=requester_id,
                ),
            ),
        )


@hire.command("show")
@DATABASE_URL_OPTION
@click.option("--request-id", required=True, help="Request id.")
def hire_show(database_url: str | None, request_id: str) -> None:
    """Show the latest active build of a request."""

    with _domain_errors():
        _emit_lines(
            CONTROLLER.show_hire(
                HireShowCommand(database_url=database_url, request_id=request_id),
            ),
        )


@build_broker.group()
def build() -> None:
    """Build lifecycle commands."""


@build.command("transition")
@DATABASE_URL_OPTION
@click.option("--build-id", required=True, help="Build id.")
@click.option(
    "--to",
    "status",
    type=click.Choice([status.value for status in BuildStatus], case_sensitive=False),
    required=True,
    help="Target status.",
)
@click.option(
    "--actor",
    type=click.Choice([actor.value for actor in Actor], case_sensitive=False),
    required=True,
    help="Who performs the transition.",
)
@click.option("--reason", default=None, help="Dispute reason.")
@click.option("--notes", default=None, help="Revision notes.")
@click.option("--delivery-url", default=None, help="Deliverable URL for delivered.")
@click.option("--actor-id", default=None, help="Platform operator id for resolutions.")
def build_transition(  # noqa: PLR0913
    database_url: str | None,
    build_id: str,
    status: str,
    actor: str,
    reason: str | None,
    notes: str | None,
    delivery_url: str | None,
    actor_id: str | None,
) -> None:
    """Move a build along the lifecycle; money moves with it."""

    with _domain_errors():
        _emit_lines(
            CONTROLLER.transition(
                BuildTransitionCommand(
                    database_url=database_url,
                    build_id=build_id,
                    status=status,
                    actor=actor,
                    reason=reason,
                    notes=notes,
                    delivery_url=delivery_url,
                    actor_id=actor_id,
                ),
            ),
        )


@build.command("events")
@DATABASE_URL_OPTION
@click.option("--build-id", required=True, help="Build id.")
def build_events(database_url: str | None, build_id: str) -> None:
    """Show the audit trail of a build."""

    with _domain_errors():
        _emit_lines(
            CONTROLLER.events(BuildEventsCommand(database_url=database_url, build_id=build_id)),
        )


@build_broker.group()
def jobs() -> None:
    """Build job queue commands."""


@jobs.command("list")
@DATABASE_URL_OPTION
@click.option(
    "--status",
    type=click.Choice([status.value for status in JobStatus], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max jobs to print.",
)
def jobs_list(database_url: str | None, status: str | None, limit: int) -> None:
    """List build jobs."""

    with _domain_errors():
        _emit_lines(
            CONTROLLER.list_jobs(
                JobsListCommand(database_url=database_url, status=status, limit=limit),
            ),
        )


@jobs.command("requeue-stuck")
@DATABASE_URL_OPTION
def jobs_requeue_stuck(database_url: str | None) -> None:
    """Return running jobs with an expired claim to the queue."""

    with _domain_errors():
        _emit_lines(CONTROLLER.requeue_stuck(JobsRequeueCommand(database_url=database_url)))


@jobs.command("retry")
@DATABASE_URL_OPTION
@click.option("--job-id", required=True, help="Dead-lettered job id.")
def jobs_retry(database_url: str | None, job_id: str) -> None:
    """Manually re-queue a dead-lettered job with a fresh retry budget."""

    with _domain_errors():
        _emit_lines(
            CONTROLLER.retry_job(JobsRetryCommand(database_url=database_url, job_id=job_id)),
        )


@build_broker.group()
def worker() -> None:
    """Worker commands."""


@worker.command("run")
@DATABASE_URL_OPTION
@click.option(
    "--once/--loop",
    default=True,
    show_default=True,
    help="Drain until idle and exit, or poll until SIGINT/SIGTERM.",
)
@click.option(
    "--max-concurrent",
    type=click.IntRange(min=1),
    default=None,
    help="Override BUILD_BROKER_WORKER_MAX_CONCURRENT.",
)
def worker_run(database_url: str | None, once: bool, max_concurrent: int | None) -> None:
    """Run the build worker pool."""

    with _domain_errors():
        _emit_lines(
            CONTROLLER.run_worker(
                WorkerRunCommand(
                    database_url=database_url,
                    once=once,
                    max_concurrent=max_concurrent,
                ),
            ),
        )


@contextmanager
def _domain_errors() -> Iterator[None]:
    try:
        yield
    except (BuildBrokerError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _parse_price(value: str) -> Decimal:
    try:
        price = Decimal(value)
        whole_cents = price.is_finite() and price == price.quantize(CENT)
    except ArithmeticError as error:
        raise click.BadParameter(f"Invalid price: {value!r}", param_hint="--price") from error
    if not price.is_finite():
        raise click.BadParameter(f"Invalid price: {value!r}", param_hint="--price")
    if price < 0:
        raise click.BadParameter("Price must be non-negative.", param_hint="--price")
    if not whole_cents:
        raise click.BadParameter("Price must be in whole cents.", param_hint="--price")
    return price


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    build_broker()
