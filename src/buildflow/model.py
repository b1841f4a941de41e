# model.py
from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import ClassVar, Dict, List, Optional, Tuple, Union


# ---------------------------------------------------------------------
# Steps, SCM, retention
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Step:
    """A single shell command inside a job."""
    name: str
    run: str
    cwd: str | None = None


@dataclass(frozen=True)
class GitSCM:
    """Where a job's sources come from. Checked out before the first step."""
    url: str
    branch: str = "master"
    credentials_id: str = "jenkins"
    remote: str = "origin"
    clean_before_checkout: bool = True

    def __post_init__(self):
        if not self.url:
            raise ValueError("GitSCM url must not be empty")


@dataclass(frozen=True)
class Retention:
    """How many builds (and builds with archived artifacts) to keep."""
    builds_to_keep: int = 50
    artifacts_to_keep: int = 10

    def __post_init__(self):
        if self.builds_to_keep < 1:
            raise ValueError("builds_to_keep must be >= 1")
        if self.artifacts_to_keep < 0:
            raise ValueError("artifacts_to_keep must be >= 0")


# ---------------------------------------------------------------------
# Publishers (post-build actions)
# ---------------------------------------------------------------------

def _require_pattern(kind: str, pattern: str) -> None:
    if not pattern or not pattern.strip():
        raise ValueError(f"{kind} publisher needs a non-empty file pattern")


@dataclass(frozen=True)
class ArchiveArtifacts:
    kind: ClassVar[str] = "archive-artifact"
    pattern: str
    only_if_successful: bool = True

    def __post_init__(self):
        _require_pattern(self.kind, self.pattern)


@dataclass(frozen=True)
class ArchiveTestResults:
    kind: ClassVar[str] = "archive-test-results"
    pattern: str

    def __post_init__(self):
        _require_pattern(self.kind, self.pattern)


STATIC_ANALYSIS_TOOLS = ("checkstyle", "pmd", "tasks", "warnings")


@dataclass(frozen=True)
class StaticAnalysisReport:
    """
    Collect a static analysis report.

    tools:
      - checkstyle / pmd: XML reports matched by `pattern`
      - tasks: scan files matched by `pattern` for `markers`
      - warnings: scan the job's console log for compiler warnings
    """
    kind: ClassVar[str] = "static-analysis-report"
    tool: str
    pattern: str = "**/*"
    markers: Tuple[str, ...] = ("FIXME", "TODO")

    def __post_init__(self):
        if self.tool not in STATIC_ANALYSIS_TOOLS:
            raise ValueError(
                f"Unknown static analysis tool {self.tool!r}; expected one of {STATIC_ANALYSIS_TOOLS}"
            )
        _require_pattern(self.kind, self.pattern)


@dataclass(frozen=True)
class CodeCoverageReport:
    kind: ClassVar[str] = "code-coverage-report"
    pattern: str = "**/jacoco*.xml"

    def __post_init__(self):
        _require_pattern(self.kind, self.pattern)


Publisher = Union[ArchiveArtifacts, ArchiveTestResults, StaticAnalysisReport, CodeCoverageReport]


# ---------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class NoTrigger:
    kind: ClassVar[str] = "none"


_CRON_FIELD = re.compile(r"^[\d*/,\-A-Za-z]+$")


@dataclass(frozen=True)
class PollSCM:
    """Poll the SCM on a cron schedule, e.g. '* * * * *' for every minute."""
    kind: ClassVar[str] = "poll-interval"
    schedule: str

    def __post_init__(self):
        fields = self.schedule.split()
        if len(fields) != 5 or not all(_CRON_FIELD.match(f) for f in fields):
            raise ValueError(f"PollSCM schedule must be a five-field cron expression, got {self.schedule!r}")


UPSTREAM_THRESHOLDS = ("SUCCESS", "UNSTABLE", "FAILURE")


@dataclass(frozen=True)
class UpstreamTrigger:
    """Run this job once `upstream` completes with at least `threshold`."""
    kind: ClassVar[str] = "upstream-completion"
    upstream: str
    threshold: str = "SUCCESS"

    def __post_init__(self):
        if not self.upstream:
            raise ValueError("UpstreamTrigger needs an upstream job name")
        if self.threshold not in UPSTREAM_THRESHOLDS:
            raise ValueError(f"threshold must be one of {UPSTREAM_THRESHOLDS}, got {self.threshold!r}")


Trigger = Union[NoTrigger, PollSCM, UpstreamTrigger]


# ---------------------------------------------------------------------
# Job
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Job:
    """
    A job definition. Created at configuration time, immutable afterwards.

    `timeout` is an absolute limit in seconds for the whole job; None means
    the registry fills in the configured default.
    """
    name: str
    steps: Tuple[Step, ...]
    publishers: Tuple[Publisher, ...] = ()
    retention: Optional[Retention] = None
    timeout: Optional[float] = None
    trigger: Trigger = NoTrigger()
    scm: Optional[GitSCM] = None
    env: Tuple[Tuple[str, str], ...] = ()
    parameters: Tuple[Tuple[str, str], ...] = ()
    timestamps: bool = True
    description: str = ""

    def __post_init__(self):
        if not self.name:
            raise ValueError("Job name must not be empty")
        if not self.steps:
            raise ValueError(f"Job '{self.name}' has no steps")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError(f"Job '{self.name}' timeout must be positive")

    @property
    def env_dict(self) -> Dict[str, str]:
        return dict(self.env)

    @property
    def parameter_defaults(self) -> Dict[str, str]:
        return dict(self.parameters)

    @property
    def command(self) -> str:
        """All steps as one shell script, for display and export."""
        return "\n".join(s.run for s in self.steps)


# ---------------------------------------------------------------------
# Pipeline structure
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class JobStage:
    job: str

    @property
    def jobs(self) -> Tuple[str, ...]:
        return (self.job,)

    @property
    def label(self) -> str:
        return self.job


@dataclass(frozen=True)
class ParallelStage:
    jobs: Tuple[str, ...]

    @property
    def label(self) -> str:
        return "parallel(" + ", ".join(self.jobs) + ")"


@dataclass(frozen=True)
class Promotion:
    """
    Trailing promotion stage: publish what `source` archived in this run.

    `job` is an optional job run first with BUILD_JOB_NAME/BUILD_JOB_NUMBER
    parameters (e.g. to fetch or sign the artifact).
    """
    source: str
    job: Optional[str] = None
    repository: Optional[str] = None
    pattern: str = "*"

    @property
    def jobs(self) -> Tuple[str, ...]:
        return (self.job,) if self.job else ()

    @property
    def label(self) -> str:
        return f"promote({self.source})"


Stage = Union[JobStage, ParallelStage]


@dataclass(frozen=True)
class Pipeline:
    name: str
    stages: Tuple[Stage, ...]
    promotion: Optional[Promotion] = None

    def job_names(self) -> List[str]:
        names: List[str] = []
        for stage in self.stages:
            names.extend(stage.jobs)
        if self.promotion is not None:
            names.extend(self.promotion.jobs)
        return names


@dataclass(frozen=True)
class View:
    """A named listing of jobs whose names match `regex`."""
    name: str
    regex: str
    description: str = ""
    columns: Tuple[str, ...] = ("name", "status", "weather", "lastDuration", "buildButton")


# ---------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------

class JobStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class ArtifactReference:
    """Opaque pointer to an archived build output."""
    id: str
    location: Path

    @property
    def filename(self) -> str:
        return self.location.name


@dataclass(frozen=True)
class RunResult:
    job: str
    build_number: int
    status: JobStatus
    reason: Optional[str] = None
    exit_code: Optional[int] = None
    artifacts: Tuple[ArtifactReference, ...] = ()
    reports: Dict[str, dict] = field(default_factory=dict)
    started_at: Optional[datetime] = None
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is JobStatus.SUCCESS

    @property
    def artifact(self) -> Optional[ArtifactReference]:
        return self.artifacts[0] if self.artifacts else None


@dataclass
class RunContext:
    """What a job function gets to know about the run it is part of."""
    build_number: int
    params: Dict[str, str] = field(default_factory=dict)
    cancel_event: threading.Event = field(default_factory=threading.Event)
    deadline: Optional[float] = None  # time.monotonic() value

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()
