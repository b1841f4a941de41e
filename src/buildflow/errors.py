# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


class BuildFlowError(Exception):
    """Base class for everything buildflow raises on purpose."""


# ----------------------------------------------------------------------
# Configuration-time errors (fatal, raised before anything runs)
# ----------------------------------------------------------------------

class ConfigurationError(BuildFlowError):
    pass


class DuplicateJobError(ConfigurationError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Duplicate job name: {name}")


class NotFoundError(ConfigurationError, KeyError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Job not found: {name}")

    def __str__(self) -> str:
        return self.args[0]


class RegistryFrozenError(ConfigurationError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Registry is frozen, cannot register job '{name}'")


class UnknownJobError(ConfigurationError):
    def __init__(self, name: str, pipeline: str = ""):
        self.name = name
        self.pipeline = pipeline
        where = f" in pipeline '{pipeline}'" if pipeline else ""
        super().__init__(f"Unknown job '{name}' referenced{where}")


class EmptyPipelineError(ConfigurationError):
    def __init__(self, pipeline: str = ""):
        self.pipeline = pipeline
        super().__init__(f"Pipeline '{pipeline}' has no stages")


class InvalidPipelineError(ConfigurationError):
    pass


# ----------------------------------------------------------------------
# Execution-time errors (recorded per stage, never crash the executor)
# ----------------------------------------------------------------------

@dataclass
class JobExecutionError(BuildFlowError):
    """A job run that did not succeed: command failure, timeout or cancel."""
    job: str
    build_number: int
    reason: str
    exit_code: Optional[int] = None
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"job_failed: {self.reason}", f"job={self.job}", f"build={self.build_number}"]
        if self.exit_code is not None:
            lines.append(f"exit_code={self.exit_code}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


@dataclass
class UnresolvedArtifactError(BuildFlowError):
    job: str
    build_number: Optional[int]

    def __str__(self) -> str:
        which = "latest successful build" if self.build_number is None else f"build #{self.build_number}"
        return f"No archived artifact found for {self.job} {which}"


@dataclass
class PromotionFailure(BuildFlowError):
    job: str
    build_number: int
    repository: str
    message: str

    def __str__(self) -> str:
        return (
            f"Promotion of {self.job} #{self.build_number} to '{self.repository}' failed: "
            f"{self.message}"
        )


class PipelineStateError(BuildFlowError):
    """An illegal PipelineRun state transition (terminal states are final)."""
