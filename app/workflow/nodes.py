import logging
from typing import Dict, Any
from langsmith import traceable
from app.core.config import (
    DETECTION_STAGE,
    DESCRIPTION_STAGE,
    ERROR_STATUS_TEMPLATE,
)
from app.metadata import MetadataUpdater
from app.models.job import Criteria
from app.models.state import PipelineState
from app.workflow.executor import StageExecutor, StageOutcome, StageResult

logger = logging.getLogger(__name__)

def log_state_transition(node_name: str, input_state: PipelineState, update: Dict[str, Any]) -> Dict[str, Any]:
    """Log what a node changed in the pipeline state."""
    changes = {k: v for k, v in update.items() if input_state.get(k) != v}
    logger.info(f"Node {node_name} on {input_state.get('subject_id')}/{input_state.get('criteria')}: {changes}")
    if update.get("error"):
        logger.error(f"Error in {node_name}: {update['error']}")
    return update

class PipelineNodes:
    """Graph nodes. Each node runs one step and reports its outcome in the state."""

    def __init__(self, detection: StageExecutor, description: StageExecutor, metadata: MetadataUpdater):
        self.executors = {DETECTION_STAGE: detection, DESCRIPTION_STAGE: description}
        self.metadata = metadata

    def _run_stage(self, stage: str, state: PipelineState) -> Dict[str, Any]:
        criteria = Criteria(state["criteria"])
        result: StageResult = self.executors[stage].execute(
            state["stage_input"], state["subject_id"], criteria, state.get("owner")
        )

        update: Dict[str, Any] = {"job_key": result.job_key, "outcome": result.outcome.value}
        if result.outcome == StageOutcome.COMPLETED:
            update["stage_input"] = result.result
            update["result"] = result.result
        elif result.outcome == StageOutcome.FAILED:
            update["error"] = result.error
            update["failed_stage"] = stage
        return log_state_transition(stage, state, update)

    @traceable(name="detection")
    def detection(self, state: PipelineState) -> Dict[str, Any]:
        """Crop the image to the building (always asynchronous)."""
        return self._run_stage(DETECTION_STAGE, state)

    @traceable(name="description")
    def description(self, state: PipelineState) -> Dict[str, Any]:
        """Describe the cropped image for the requested criteria."""
        return self._run_stage(DESCRIPTION_STAGE, state)

    @traceable(name="finalize")
    def finalize(self, state: PipelineState) -> Dict[str, Any]:
        """Write the final description into the subject metadata."""
        self.metadata.update(state["subject_id"], state["criteria"], state["result"])
        return log_state_transition("finalize", state, {"outcome": StageOutcome.COMPLETED.value})

    @traceable(name="fail")
    def fail(self, state: PipelineState) -> Dict[str, Any]:
        """Record a terminal failure so readers don't see a stale "Processing"."""
        stage = state.get("failed_stage") or "pipeline"
        self.metadata.update(
            state["subject_id"], state["criteria"], ERROR_STATUS_TEMPLATE.format(stage=stage)
        )
        return log_state_transition("fail", state, {"outcome": StageOutcome.FAILED.value})
