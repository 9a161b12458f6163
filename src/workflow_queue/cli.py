"""Command line entry point for the workflow queue.

Operator commands:
    workflow-queue list [--columns ...] [--limit N] [--status ...] [--watch]
    workflow-queue cancel <workflow-id>
    workflow-queue purge

Pipeline step commands:
    workflow-queue wait        wait in the queue until this run is at the front
    workflow-queue release     release the lock when the run finishes
    workflow-queue cancel-job  enforce a self-cancellation decided by `wait`
"""

import argparse
import logging
import sys
import time
from collections.abc import Callable, Sequence

from rich.console import Console

from .admission import AdmissionController, AdmissionResult, AdmissionSettings
from .cancellation import CancellationExecutor, CancelMethod
from .config import Config
from .display import (
    DEFAULT_COLUMNS,
    DEFAULT_STATUSES,
    MAX_LIMIT,
    parse_columns,
    parse_interval,
    parse_limit,
    parse_statuses,
    render,
)
from .errors import ConfigurationError, ValidationError, WorkflowQueueError
from .platform import (
    CircleCIClient,
    CircleCIRunController,
    GitHubClient,
    GitRepository,
    RunContext,
    message_has_tag,
)
from .release import ReleaseController, ReleaseWhen
from .schemas import WorkflowStatus
from .store import QueueStore, SQLAlchemyQueueStore
from .timeutil import parse_ttl
from .workspace import RunWorkspace

logger = logging.getLogger("workflow-queue")


def _argtype(parse: Callable[[str], object]) -> Callable[[str], object]:
    """Adapt a validator so argparse reports ValidationError as a usage error."""

    def convert(value: str) -> object:
        try:
            return parse(value)
        except ValidationError as exc:
            raise argparse.ArgumentTypeError(str(exc)) from exc

    convert.__name__ = parse.__name__
    return convert


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise ValidationError(f"Expected an integer: {value!r}") from exc
    if number <= 0:
        raise ValidationError(f"Expected a positive integer: {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-k", "--key", help="Workflow lock key (default: $WORKFLOW_LOCK_KEY)")
    common.add_argument(
        "-t",
        "--database-url",
        help="Workflow store database URL (default: $WORKFLOW_DATABASE_URL)",
    )

    step = argparse.ArgumentParser(add_help=False)
    step.add_argument(
        "--workspace",
        help="Directory shared between the steps of a run (default: $WORKFLOW_WORKSPACE_DIR)",
    )

    parser = argparse.ArgumentParser(
        prog="workflow-queue", description="Serialize pipeline runs through a shared queue"
    )
    commands = parser.add_subparsers(dest="command", required=True, metavar="<command>")

    ls = commands.add_parser("list", aliases=["ls"], parents=[common], help="List workflows")
    ls.add_argument(
        "-c",
        "--columns",
        type=_argtype(parse_columns),
        default=DEFAULT_COLUMNS,
        help=f"'all' or a comma-separated list of columns (default: {','.join(DEFAULT_COLUMNS)})",
    )
    ls.add_argument(
        "-l",
        "--limit",
        type=_argtype(parse_limit),
        default=MAX_LIMIT,
        help=f"Number of workflows to return, 1-{MAX_LIMIT} (default: {MAX_LIMIT})",
    )
    ls.add_argument(
        "-s",
        "--status",
        type=_argtype(parse_statuses),
        default=DEFAULT_STATUSES,
        help="'all' or a comma-separated list of statuses (default: QUEUED,RUNNING)",
    )
    ls.add_argument("-w", "--watch", action="store_true", help="Redraw until interrupted")
    ls.add_argument(
        "-p",
        "--interval",
        type=_argtype(parse_interval),
        default=2,
        help="Seconds between redraws when watching, 1-60 (default: 2)",
    )
    ls.add_argument("-q", "--quiet", action="store_true", help="Only print workflow IDs")

    cancel = commands.add_parser("cancel", parents=[common], help="Cancel a workflow")
    cancel.add_argument("workflow_id", help="Workflow ID to cancel")

    _ = commands.add_parser("purge", parents=[common], help="Delete expired entries")

    wait = commands.add_parser(
        "wait", parents=[common, step], help="Wait until this run is at the front of the queue"
    )
    wait.add_argument(
        "--wait-for", type=_argtype(_positive_int), help="Minutes to wait before giving up"
    )
    wait.add_argument(
        "--poll-interval", type=_argtype(_positive_int), help="Seconds between attempts"
    )
    wait.add_argument("--ttl", help="Lifetime of the queue entry, e.g. '7 days'")
    wait.add_argument(
        "--check-previous-commit",
        action="store_true",
        default=None,
        help="Wait until the previous commit has been added to the queue",
    )
    wait.add_argument(
        "--force", action="store_true", help="Continue regardless of other running workflows"
    )
    wait.add_argument(
        "--no-cancel-tag",
        default="",
        help="Never self-cancel if this tag is in the commit message (case-insensitive)",
    )

    release = commands.add_parser(
        "release", parents=[common, step], help="Release the lock held by this run"
    )
    release.add_argument(
        "--when", type=ReleaseWhen, choices=list(ReleaseWhen), default=ReleaseWhen.ALWAYS
    )
    release.add_argument("--outcome", choices=["success", "failure"], required=True)

    cancel_job = commands.add_parser(
        "cancel-job", parents=[step], help="Cancel this run if admission decided to squash it"
    )
    cancel_job.add_argument(
        "--method", type=CancelMethod, choices=list(CancelMethod), default=CancelMethod.CANCEL
    )
    cancel_job.add_argument(
        "--grace-period",
        type=_argtype(_positive_int),
        help="Seconds to wait for the platform to cancel the job",
    )

    return parser


# -------------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------------


def _require_key(args: argparse.Namespace) -> str:
    key = args.key or Config.lock_key()
    if not key:
        raise ConfigurationError("Environment variable WORKFLOW_LOCK_KEY or --key is required")
    return key


def open_store(args: argparse.Namespace) -> SQLAlchemyQueueStore:
    database_url = args.database_url or Config.database_url()
    if not database_url:
        raise ConfigurationError(
            "Environment variable WORKFLOW_DATABASE_URL or --database-url is required"
        )
    return SQLAlchemyQueueStore.from_url(database_url)


def _workspace(args: argparse.Namespace) -> RunWorkspace:
    return RunWorkspace(args.workspace or Config.workspace_dir())


def watch_workflows(
    store: QueueStore,
    key: str,
    args: argparse.Namespace,
    console: Console,
    sleep: Callable[[float], None] = time.sleep,
    iterations: int | None = None,
) -> None:
    """Re-query and redraw every ``args.interval`` seconds.

    Runs until interrupted, or for ``iterations`` redraws when given.
    """
    drawn = 0
    while iterations is None or drawn < iterations:
        records = store.query_by_partition(key, args.status, args.limit)
        console.clear()
        console.print("Press [CTRL+C] to stop..\n", markup=False)
        render(console, records, args.columns, args.quiet)
        drawn += 1
        sleep(args.interval)


# -------------------------------------------------------------------------
# Commands
# -------------------------------------------------------------------------


def cmd_list(args: argparse.Namespace, console: Console) -> int:
    key = _require_key(args)
    store = open_store(args)
    if args.watch:
        try:
            watch_workflows(store, key, args, console)
        except KeyboardInterrupt:
            pass
        return 0
    records = store.query_by_partition(key, args.status, args.limit)
    render(console, records, args.columns, args.quiet)
    return 0


def cmd_cancel(args: argparse.Namespace, console: Console) -> int:
    key = _require_key(args)
    store = open_store(args)
    record = store.query_by_workflow_id(key, args.workflow_id)
    if record is None:
        logger.error("No item found in %s with workflow_id=%s", key, args.workflow_id)
        return 1
    updated = store.update_status(
        key, record.committed_at, WorkflowStatus.CANCELLED, workflow_id=record.workflow_id
    )
    if updated is None:
        logger.error("Workflow %s expired before it could be cancelled", args.workflow_id)
        return 1
    if updated.status is not WorkflowStatus.CANCELLED:
        logger.warning("Workflow %s had already finished as %s", updated.workflow_id, updated.status)
    console.print(updated.model_dump_json(indent=2), markup=False, highlight=False)
    return 0


def cmd_purge(args: argparse.Namespace, console: Console) -> int:
    deleted = open_store(args).purge_expired()
    console.print(f"Deleted {deleted} expired entries")
    return 0


def cmd_wait(args: argparse.Namespace, console: Console) -> int:
    key = args.key or Config.lock_key()
    if not key:
        logger.info("No lock key set. Continuing...")
        return 0

    context = RunContext.from_env()
    git = GitRepository()
    skip_disabled = bool(args.no_cancel_tag) and message_has_tag(
        git.commit_message(), args.no_cancel_tag
    )
    check_previous_commit = (
        Config.check_previous_commit()
        if args.check_previous_commit is None
        else args.check_previous_commit
    )
    settings = AdmissionSettings(
        wait_for=args.wait_for or Config.wait_for(),
        poll_interval=args.poll_interval or Config.poll_interval(),
        ttl=parse_ttl(args.ttl or Config.ttl()),
        check_previous_commit=check_previous_commit,
        skip_disabled=skip_disabled,
        force=args.force,
    )
    previous_commit = git.previous_commit() if settings.check_previous_commit else None

    credentials = Config.github_credentials()
    github = GitHubClient(credentials) if credentials else None
    controller = AdmissionController(open_store(args), _workspace(args), github=github)
    try:
        outcome = controller.admit(
            key, context, git.committed_at(), settings, previous_commit=previous_commit
        )
    finally:
        if github is not None:
            github.close()

    if outcome.result in (AdmissionResult.SQUASHED, AdmissionResult.CANCELLED):
        console.print(f"Workflow {context.workflow_id} will be cancelled")
    return 0


def cmd_release(args: argparse.Namespace, console: Console) -> int:
    controller = ReleaseController(open_store(args), _workspace(args))
    outcome = controller.release(args.outcome == "success", args.when)
    if outcome.released:
        console.print(f"Workflow released as {outcome.status}")
    return 0


def cmd_cancel_job(args: argparse.Namespace, console: Console) -> int:
    workspace = _workspace(args)
    if workspace.load_cancel_decision() is None:
        logger.info("No cancellation pending")
        return 0

    context = RunContext.from_env()
    grace_period = args.grace_period or Config.cancel_grace_period()
    token = Config.circle_api_token()
    client = CircleCIClient(token) if args.method is CancelMethod.CANCEL else None
    try:
        executor = CancellationExecutor(
            workspace, CircleCIRunController(client, context), grace_period=grace_period
        )
        _ = executor.execute(args.method)
    finally:
        if client is not None:
            client.close()
    return 0


COMMANDS: dict[str, Callable[[argparse.Namespace, Console], int]] = {
    "list": cmd_list,
    "ls": cmd_list,
    "cancel": cmd_cancel,
    "purge": cmd_purge,
    "wait": cmd_wait,
    "release": cmd_release,
    "cancel-job": cmd_cancel_job,
}


def main(argv: Sequence[str] | None = None, console: Console | None = None) -> int:
    logging.basicConfig(
        level=Config.LOG_LEVEL,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )
    args = build_parser().parse_args(argv)
    console = console or Console()
    try:
        return COMMANDS[args.command](args, console)
    except WorkflowQueueError as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
