"""Cancellation: enforce a cancellation decision taken during admission.

Admission only records the decision so the steps between admission and this
one (releasing the lock, cleanup) can still run. This step then terminates the
run through the platform. If the platform does not stop the run within the
grace period the step fails, so a superseded run can never carry on to deploy.
"""

import logging
import time
from collections.abc import Callable
from enum import StrEnum

from .errors import CancellationFailure, ValidationError
from .platform import RunController
from .schemas import CancelDecision
from .store import Clock, epoch_now
from .workspace import RunWorkspace

logger = logging.getLogger(__name__)


class CancelMethod(StrEnum):
    CANCEL = "cancel"  # terminate the job
    HALT = "halt"  # stop remaining steps, job still succeeds


class CancellationExecutor:
    def __init__(
        self,
        workspace: RunWorkspace,
        controller: RunController,
        *,
        grace_period: int = 60,
        poll_interval: int = 5,
        clock: Clock = epoch_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if grace_period <= 0 or poll_interval <= 0:
            raise ValidationError(
                f"grace_period and poll_interval must be positive: {grace_period}, {poll_interval}"
            )
        self.workspace: RunWorkspace = workspace
        self.controller: RunController = controller
        self.grace_period: int = grace_period
        self.poll_interval: int = poll_interval
        self.clock: Clock = clock
        self.sleep: Callable[[float], None] = sleep

    def pending_decision(self) -> CancelDecision | None:
        return self.workspace.load_cancel_decision()

    def _wait_until(self, deadline: int, predicate: Callable[[], bool]) -> bool:
        while True:
            if predicate():
                return True
            remaining = deadline - self.clock()
            if remaining <= 0:
                return False
            self.sleep(min(self.poll_interval, remaining))

    def execute(self, method: CancelMethod = CancelMethod.CANCEL) -> bool:
        """Carry out a pending cancellation decision.

        Returns:
            False if there was nothing to cancel; True after a successful halt

        Raises:
            CancellationFailure: The run is still alive after the grace period
        """
        decision = self.pending_decision()
        if decision is None:
            logger.info("No cancellation pending")
            return False

        logger.info("Cancelling workflow %s: %s", decision.workflow_id, decision.reason or "no reason")

        if method is CancelMethod.HALT:
            self.controller.halt()
            logger.info("Halted workflow %s; remaining steps are skipped", decision.workflow_id)
            return True

        deadline = self.clock() + self.grace_period
        confirmed = self.controller.request_cancel() or self._wait_until(
            deadline, self.controller.is_cancelled
        )
        if not confirmed:
            raise CancellationFailure(
                f"Platform did not confirm cancellation of {decision.workflow_id} "
                f"within {self.grace_period}s"
            )

        # The platform kills this process once the cancellation lands.
        logger.info("Cancellation confirmed; waiting for the platform to stop the run")
        _ = self._wait_until(deadline, lambda: False)
        raise CancellationFailure(
            f"Workflow {decision.workflow_id} is still running after cancellation was confirmed"
        )
