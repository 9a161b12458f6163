"""Queue-based serialization of independently triggered pipeline runs."""

from .admission import AdmissionController, AdmissionOutcome, AdmissionResult, AdmissionSettings
from .cancellation import CancellationExecutor, CancelMethod
from .config import Config
from .errors import (
    AdmissionTimeout,
    CancellationFailure,
    ConfigurationError,
    DataIntegrityError,
    PlatformError,
    StoreError,
    ValidationError,
    WorkflowQueueError,
)
from .memory_store import InMemoryQueueStore
from .release import ReleaseController, ReleaseOutcome, ReleaseWhen
from .schemas import CancelDecision, WorkflowKey, WorkflowRecord, WorkflowStatus
from .store import QueueStore, SQLAlchemyQueueStore
from .workspace import RunWorkspace

__all__ = [
    # Configuration
    "Config",
    # Stores
    "QueueStore",
    "SQLAlchemyQueueStore",
    "InMemoryQueueStore",
    "RunWorkspace",
    # Protocol steps
    "AdmissionController",
    "AdmissionOutcome",
    "AdmissionResult",
    "AdmissionSettings",
    "ReleaseController",
    "ReleaseOutcome",
    "ReleaseWhen",
    "CancellationExecutor",
    "CancelMethod",
    # Pydantic Models
    "CancelDecision",
    "WorkflowKey",
    "WorkflowRecord",
    "WorkflowStatus",
    # Errors
    "WorkflowQueueError",
    "ConfigurationError",
    "ValidationError",
    "StoreError",
    "DataIntegrityError",
    "AdmissionTimeout",
    "CancellationFailure",
    "PlatformError",
]
