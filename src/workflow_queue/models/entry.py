"""Queue entry model backing the SQL workflow store."""

from typing import override

from pydantic import JsonValue
from sqlalchemy import BigInteger, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from .base import Base


class WorkflowQueueEntry(Base):
    """One run attempt in a workflow queue.

    Primary key is (key, committed_at). Two secondary indexes serve the point
    lookups the protocol needs without knowing committed_at:
    - (key, workflow_id): resolve a run for release or operator cancel
    - (key, commit): check that the previous commit has been enqueued

    All timestamps are epoch seconds.
    """

    __tablename__ = "workflow_queue_entries"  # pyright: ignore[reportUnannotatedClassAttribute]
    __table_args__ = (  # pyright: ignore[reportUnannotatedClassAttribute]
        Index("ix_workflow_queue_entries_workflow_id", "key", "workflow_id"),
        Index("ix_workflow_queue_entries_commit", "key", "commit"),
    )

    key: Mapped[str] = mapped_column(String, primary_key=True)
    committed_at: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)

    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    expires_at: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    acquired_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    released_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    build_num: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    commit: Mapped[str] = mapped_column(String, nullable=False)
    username: Mapped[str] = mapped_column(String, nullable=False)
    workflow_id: Mapped[str] = mapped_column(String, nullable=False)

    status: Mapped[str] = mapped_column(String, nullable=False, index=True)
    state: Mapped[dict[str, JsonValue]] = mapped_column(JSON, nullable=False, default=dict)

    @override
    def __repr__(self) -> str:
        return (
            f"<WorkflowQueueEntry(key={self.key}, committed_at={self.committed_at}, "
            f"workflow_id={self.workflow_id}, status={self.status})>"
        )
