from .config import Settings
from .dsl import job, sh, git, build, JobBuilder, Workflow, wf
from .errors import (
    BuildFlowError,
    DuplicateJobError,
    EmptyPipelineError,
    JobExecutionError,
    NotFoundError,
    PromotionFailure,
    UnknownJobError,
    UnresolvedArtifactError,
)
from .executor import PipelineExecutor, PipelineRun, PipelineState
from .graph import build_pipeline, parallel, promote, sequential, validate_pipeline
from .model import Job, Pipeline, RunContext, RunResult, Step
from .promotion import PromotionGate
from .registry import JobRegistry
from .runner import ShellRunner

__all__ = [
    "Settings",
    "job", "sh", "git", "build", "JobBuilder", "Workflow", "wf",
    "BuildFlowError", "DuplicateJobError", "EmptyPipelineError", "JobExecutionError",
    "NotFoundError", "PromotionFailure", "UnknownJobError", "UnresolvedArtifactError",
    "PipelineExecutor", "PipelineRun", "PipelineState",
    "build_pipeline", "parallel", "promote", "sequential", "validate_pipeline",
    "Job", "Pipeline", "RunContext", "RunResult", "Step",
    "PromotionGate", "JobRegistry", "ShellRunner",
]
