from .runner import PipelineRunner
from .executor import StageExecutor, StageOutcome, StageResult
from .graph import create_pipeline_graph

__all__ = ['PipelineRunner', 'StageExecutor', 'StageOutcome', 'StageResult', 'create_pipeline_graph']
