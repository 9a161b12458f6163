"""Exception hierarchy for workflow queue operations."""


class WorkflowQueueError(Exception):
    """Base class for all workflow queue errors."""


class ConfigurationError(WorkflowQueueError):
    """A required setting (lock key, database URL, credentials) is missing."""


class ValidationError(WorkflowQueueError, ValueError):
    """User supplied an unknown status/column or an out-of-range number."""


class StoreError(WorkflowQueueError):
    """The backing store failed to complete an operation."""


class DataIntegrityError(StoreError):
    """A secondary index lookup matched more than one entry."""


class AdmissionTimeout(WorkflowQueueError, TimeoutError):
    """The run did not reach the front of the queue in time.

    The entry is left QUEUED; it expires via its TTL or is cancelled by an operator.
    """


class CancellationFailure(WorkflowQueueError):
    """The platform did not terminate the run after a cancellation decision."""


class PlatformError(WorkflowQueueError):
    """A call to the orchestration platform or source host failed."""
