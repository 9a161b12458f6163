"""Per-run scratch area shared between pipeline steps.

Admission writes the resolved store key (and, when it decides to squash the
run, a cancellation decision); release and cancellation steps read them back.
The directory is expected to be persisted between jobs by the platform.
"""

import logging
from pathlib import Path
from typing import Final

from pydantic import ValidationError as PydanticValidationError

from .errors import ConfigurationError
from .schemas import CancelDecision, WorkflowKey

logger = logging.getLogger(__name__)


class RunWorkspace:
    """Scratch directory holding workflow-key.json and cancel-decision.json."""

    WORKFLOW_KEY_FILE: Final[str] = "workflow-key.json"
    CANCEL_DECISION_FILE: Final[str] = "cancel-decision.json"

    def __init__(self, base_dir: str | Path):
        self.base_dir: Path = Path(base_dir)

    @property
    def workflow_key_path(self) -> Path:
        return self.base_dir / self.WORKFLOW_KEY_FILE

    @property
    def cancel_decision_path(self) -> Path:
        return self.base_dir / self.CANCEL_DECISION_FILE

    def _write(self, path: Path, payload: str) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        _ = path.write_text(payload + "\n", encoding="utf-8")

    def save_workflow_key(self, workflow_key: WorkflowKey) -> Path:
        self._write(self.workflow_key_path, workflow_key.model_dump_json())
        return self.workflow_key_path

    def load_workflow_key(self) -> WorkflowKey | None:
        """Return the persisted key, or None if admission never enqueued this run."""
        if not self.workflow_key_path.exists():
            return None
        try:
            return WorkflowKey.model_validate_json(self.workflow_key_path.read_text(encoding="utf-8"))
        except PydanticValidationError as exc:
            raise ConfigurationError(f"Corrupt workflow key in {self.workflow_key_path}") from exc

    def save_cancel_decision(self, decision: CancelDecision) -> Path:
        self._write(self.cancel_decision_path, decision.model_dump_json())
        logger.info("Recorded cancellation decision for %s", decision.workflow_id)
        return self.cancel_decision_path

    def load_cancel_decision(self) -> CancelDecision | None:
        if not self.cancel_decision_path.exists():
            return None
        try:
            return CancelDecision.model_validate_json(
                self.cancel_decision_path.read_text(encoding="utf-8")
            )
        except PydanticValidationError as exc:
            raise ConfigurationError(
                f"Corrupt cancellation decision in {self.cancel_decision_path}"
            ) from exc

    def clear_cancel_decision(self) -> bool:
        if self.cancel_decision_path.exists():
            self.cancel_decision_path.unlink()
            return True
        return False
