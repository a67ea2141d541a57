from langgraph.graph import StateGraph, START, END
from app.core.config import DETECTION_STAGE, DESCRIPTION_STAGE
from app.models.state import PipelineState
from app.workflow.nodes import PipelineNodes

ENTRY_NODES = (DETECTION_STAGE, DESCRIPTION_STAGE, "finalize", "fail")

def _after_stage(next_node: str):
    """Route a stage: continue on completion, stop while suspended."""
    def route(state: PipelineState) -> str:
        outcome = state.get("outcome")
        if outcome == "completed":
            return next_node
        if outcome == "failed":
            return "fail"
        return END
    return route

def create_pipeline_graph(nodes: PipelineNodes):
    """Create and return the compiled pipeline graph.

    The entry node comes from the state: a new submission starts at detection,
    a webhook enters at the stage after the one that completed.
    """
    workflow = StateGraph(PipelineState)

    # Add nodes
    workflow.add_node(DETECTION_STAGE, nodes.detection)
    workflow.add_node(DESCRIPTION_STAGE, nodes.description)
    workflow.add_node("finalize", nodes.finalize)
    workflow.add_node("fail", nodes.fail)

    workflow.add_conditional_edges(
        START,
        lambda state: state["entry"],
        {name: name for name in ENTRY_NODES}
    )

    workflow.add_conditional_edges(
        DETECTION_STAGE,
        _after_stage(DESCRIPTION_STAGE),
        {DESCRIPTION_STAGE: DESCRIPTION_STAGE, "fail": "fail", END: END}
    )

    workflow.add_conditional_edges(
        DESCRIPTION_STAGE,
        _after_stage("finalize"),
        {"finalize": "finalize", "fail": "fail", END: END}
    )

    workflow.add_edge("finalize", END)
    workflow.add_edge("fail", END)

    return workflow.compile()
