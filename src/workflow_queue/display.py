"""Validation and table rendering for the query CLI.

Timestamps are stored as epoch seconds and only converted for display.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Final

from rich import box
from rich.console import Console
from rich.table import Table

from .errors import ValidationError
from .schemas import ALL_STATUSES, WorkflowRecord, WorkflowStatus
from .timeutil import NULL_DISPLAY, format_timestamp

ALL_KEYWORD: Final[str] = "all"
MAX_LIMIT: Final[int] = 100
MAX_INTERVAL: Final[int] = 60


@dataclass(frozen=True)
class Column:
    title: str
    is_date: bool = False


COLUMNS: Final[dict[str, Column]] = {
    "workflow_id": Column("WORKFLOW ID"),
    "status": Column("STATUS"),
    "username": Column("USERNAME"),
    "committed_at": Column("COMMITTED AT", is_date=True),
    "created_at": Column("CREATED AT", is_date=True),
    "acquired_at": Column("ACQUIRED AT", is_date=True),
    "released_at": Column("RELEASED AT", is_date=True),
    "commit": Column("COMMIT"),
}
DEFAULT_COLUMNS: Final[tuple[str, ...]] = (
    "workflow_id",
    "status",
    "username",
    "committed_at",
    "acquired_at",
    "released_at",
    "commit",
)
DEFAULT_STATUSES: Final[tuple[WorkflowStatus, ...]] = (
    WorkflowStatus.QUEUED,
    WorkflowStatus.RUNNING,
)


def _split(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def parse_statuses(value: str) -> tuple[WorkflowStatus, ...] | None:
    """Parse ``all`` or a comma-separated status list; None means no filter."""
    if value.strip().lower() == ALL_KEYWORD:
        return None
    names = [name.upper() for name in _split(value)]
    valid = {status.value for status in ALL_STATUSES}
    if not names or any(name not in valid for name in names):
        raise ValidationError(
            f"One or more of the provided statuses are not valid: {value} "
            f"(choose from {','.join(s.value for s in ALL_STATUSES)})"
        )
    return tuple(dict.fromkeys(WorkflowStatus(name) for name in names))


def parse_columns(value: str) -> tuple[str, ...]:
    """Parse ``all`` or a comma-separated column list."""
    if value.strip().lower() == ALL_KEYWORD:
        return tuple(sorted(COLUMNS))
    names = _split(value)
    if not names or any(name not in COLUMNS for name in names):
        raise ValidationError(
            f"One or more of the provided columns are not valid: {value} "
            f"(choose from {','.join(sorted(COLUMNS))})"
        )
    return tuple(names)


def _bounded_int(value: str | int, name: str, upper: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{name} must be an integer: {value!r}") from exc
    if not 1 <= number <= upper:
        raise ValidationError(f"{name} must be between 1 and {upper}: {number}")
    return number


def parse_limit(value: str | int) -> int:
    return _bounded_int(value, "Limit", MAX_LIMIT)


def parse_interval(value: str | int) -> int:
    return _bounded_int(value, "Interval", MAX_INTERVAL)


def cell(record: WorkflowRecord, column: str) -> str:
    value = getattr(record, column)
    if COLUMNS[column].is_date:
        return format_timestamp(value)
    if value is None:
        return NULL_DISPLAY
    return str(value)


def build_table(records: Sequence[WorkflowRecord], columns: Sequence[str]) -> Table:
    table = Table(box=box.SIMPLE_HEAD, show_edge=False, pad_edge=False)
    for column in columns:
        table.add_column(COLUMNS[column].title, no_wrap=True)
    for record in records:
        table.add_row(*(cell(record, column) for column in columns))
    return table


def render(
    console: Console,
    records: Sequence[WorkflowRecord],
    columns: Sequence[str],
    quiet: bool = False,
) -> None:
    """Print records as a table, or only their workflow ids when ``quiet``."""
    if quiet:
        for record in records:
            console.print(record.workflow_id, highlight=False)
        return
    console.print(build_table(records, columns))
