"""Run lifecycle: state machine, end-to-end pipeline and scheduler."""

from .run import TRANSITIONS, PipelineRun, RunContext, new_run_id
from .runner import TriagePipeline, build_pipeline
from .scheduler import RunScheduler, Schedule, validate_cron

__all__ = [
    "TRANSITIONS",
    "PipelineRun",
    "RunContext",
    "RunScheduler",
    "Schedule",
    "TriagePipeline",
    "build_pipeline",
    "new_run_id",
    "validate_cron",
]
