"""Workflow queue database models."""

from .base import Base
from .entry import WorkflowQueueEntry

__all__ = ["Base", "WorkflowQueueEntry"]
