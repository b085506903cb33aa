"""Matrix expansion, stage execution, classification, and the controller that ties them."""

from matrixci.pipeline.classifier import blocking_runs, classify, summarize
from matrixci.pipeline.controller import PipelineConfiguration, PipelineController, run_pipeline
from matrixci.pipeline.matrix import expand
from matrixci.pipeline.stage_runner import StageRunner

__all__ = [
    "PipelineConfiguration",
    "PipelineController",
    "StageRunner",
    "blocking_runs",
    "classify",
    "expand",
    "run_pipeline",
    "summarize",
]
