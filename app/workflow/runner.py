import asyncio
import logging
from typing import Callable, Optional
from app.core.config import DETECTION_STAGE, NEXT_STAGE
from app.credits import CreditGate
from app.errors import InputValidationError, InsufficientCreditError
from app.metadata import MetadataUpdater
from app.models.job import Criteria, JobRecord, JobStatus
from app.models.state import PipelineState
from app.workflow.executor import StageExecutor

logger = logging.getLogger(__name__)

class PipelineRunner:
    """Entry points into the pipeline graph.

    ``submit`` starts a pipeline for a client request; ``resume`` is called by
    the webhook receiver with the record of the stage that just finished.
    """

    def __init__(
        self,
        graph,
        detection: StageExecutor,
        description: StageExecutor,
        metadata: MetadataUpdater,
        credit_gate: CreditGate,
        image_url_for: Callable[[str], str],
        detection_cost: int = 1,
    ):
        self.graph = graph
        self.detection = detection
        self.description = description
        self.metadata = metadata
        self.credit_gate = credit_gate
        self.image_url_for = image_url_for
        self.detection_cost = detection_cost

    def submit(self, subject_id: str, criteria: Criteria, owner: Optional[str]) -> PipelineState:
        """Admit a new pipeline run. Returns the state at the point it stopped."""
        # Surfaces NotFoundError before anything is debited
        self.metadata.read(subject_id)

        image_url = self.image_url_for(subject_id)
        job_key = self._in_flight(image_url, criteria)
        if job_key is not None:
            logger.info(f"Pipeline for {subject_id}/{criteria} already running, skipping debit")
            return PipelineState(
                subject_id=subject_id,
                criteria=criteria.value,
                job_key=job_key,
                outcome="running",
            )

        if owner is not None and not self.credit_gate.debit(owner, self.detection_cost):
            raise InsufficientCreditError("Insufficient credit")

        initial_state = PipelineState(
            subject_id=subject_id,
            criteria=criteria.value,
            owner=owner,
            entry=DETECTION_STAGE,
            stage_input=image_url,
        )
        return self.graph.invoke(initial_state)

    def _in_flight(self, image_url: str, criteria: Criteria) -> Optional[str]:
        """Key of the stage job still running for this image and criteria, if any."""
        key, detection = self.detection.lookup(image_url, criteria)
        if detection is None:
            return None
        if detection.processing:
            return key
        if detection.status == JobStatus.COMPLETED and detection.result:
            key, description = self.description.lookup(detection.result, criteria)
            if description is not None and description.processing:
                return key
        return None

    def resume(self, stage: str, record: JobRecord) -> PipelineState:
        """Continue after ``stage`` reached a terminal state."""
        if stage not in NEXT_STAGE:
            raise InputValidationError(f"Unknown stage {stage}")

        state = PipelineState(
            subject_id=record.subject_id,
            criteria=record.criteria.value,
            owner=record.owner,
        )
        if record.status == JobStatus.FAILED:
            state.update(entry="fail", failed_stage=stage, error=record.error)
        elif record.status == JobStatus.COMPLETED:
            next_stage = NEXT_STAGE[stage]
            if next_stage is None:
                state.update(entry="finalize", result=record.result)
            else:
                state.update(entry=next_stage, stage_input=record.result)
        else:
            raise InputValidationError(f"Cannot resume from a {record.status.value} job")

        logger.info(f"Resuming {record.subject_id}/{record.criteria} after {stage} at {state['entry']}")
        return self.graph.invoke(state)

    async def run(self, func, *args) -> PipelineState:
        """Run a blocking entry point in a thread to keep the event loop free."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)
