from typing import TypedDict, Literal

class PipelineState(TypedDict, total=False):
    """State carried through the pipeline graph for one invocation."""
    subject_id: str
    criteria: str
    owner: str | None
    entry: Literal['detection', 'description', 'finalize', 'fail']
    stage_input: str | None
    job_key: str | None
    outcome: Literal['queued', 'running', 'completed', 'failed'] | None
    result: str | None
    error: str | None
    failed_stage: str | None
