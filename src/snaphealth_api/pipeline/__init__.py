"""Multi-source analysis pipeline built on LangGraph."""

from .graph import (
    AnalysisPipeline,
    PipelineOutcome,
    build_graph,
    clear_pipeline_cache,
    close_pipeline,
    get_analysis_pipeline,
)
from .nodes import create_fallback_result
from .state import AnalysisState, PipelineTracker

__all__ = [
    "AnalysisPipeline",
    "AnalysisState",
    "PipelineOutcome",
    "PipelineTracker",
    "build_graph",
    "create_fallback_result",
    "get_analysis_pipeline",
    "clear_pipeline_cache",
    "close_pipeline",
]
