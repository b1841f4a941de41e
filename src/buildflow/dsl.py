# dsl.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional

from .model import (
    ArchiveArtifacts,
    ArchiveTestResults,
    CodeCoverageReport,
    GitSCM,
    Job,
    NoTrigger,
    Pipeline,
    PollSCM,
    Publisher,
    Retention,
    StaticAnalysisReport,
    Step,
    Trigger,
    UpstreamTrigger,
    View,
)
from .registry import JobRegistry


# ---------------------------------------------------------------------
# Step / SCM / trigger helpers
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, cwd: str | None = None) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd)


def git(url: str, branch: str = "master", credentials_id: str = "jenkins") -> GitSCM:
    """Clone `url` at `branch`, cleaning the workspace before checkout."""
    return GitSCM(url=url, branch=branch, credentials_id=credentials_id)


def poll_scm(schedule: str) -> PollSCM:
    return PollSCM(schedule)


def upstream(name: str, threshold: str = "SUCCESS") -> UpstreamTrigger:
    return UpstreamTrigger(upstream=name, threshold=threshold)


# ---------------------------------------------------------------------
# Publisher helpers
# ---------------------------------------------------------------------

def archive(pattern: str, *, only_if_successful: bool = True) -> ArchiveArtifacts:
    return ArchiveArtifacts(pattern, only_if_successful=only_if_successful)


def junit(pattern: str) -> ArchiveTestResults:
    return ArchiveTestResults(pattern)


def checkstyle(pattern: str) -> StaticAnalysisReport:
    return StaticAnalysisReport("checkstyle", pattern)


def pmd(pattern: str) -> StaticAnalysisReport:
    return StaticAnalysisReport("pmd", pattern)


def tasks(pattern: str = "**/*", *markers: str) -> StaticAnalysisReport:
    return StaticAnalysisReport("tasks", pattern, markers=tuple(markers) or ("FIXME", "TODO"))


def warnings() -> StaticAnalysisReport:
    # compiler warnings are read from the console log, not from files
    return StaticAnalysisReport("warnings", "console")


def jacoco(pattern: str = "**/jacoco*.xml") -> CodeCoverageReport:
    return CodeCoverageReport(pattern)


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,
    publishers: Optional[List[Publisher]] = None,
    scm: Optional[GitSCM] = None,
    trigger: Optional[Trigger] = None,
    env: Optional[Dict[str, str]] = None,
    parameters: Optional[Dict[str, str]] = None,
    builds_to_keep: Optional[int] = None,
    artifacts_to_keep: Optional[int] = None,
    timeout_minutes: Optional[float] = None,
    timestamps: bool = True,
    description: str = "",
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Job:
    if not steps:
        raise ValueError(f"job({name!r}) must have at least one step")

    steps_final = list(steps)
    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    retention = None
    if builds_to_keep is not None or artifacts_to_keep is not None:
        retention = Retention(
            builds_to_keep=builds_to_keep if builds_to_keep is not None else Retention.builds_to_keep,
            artifacts_to_keep=artifacts_to_keep if artifacts_to_keep is not None else Retention.artifacts_to_keep,
        )

    return Job(
        name=name,
        steps=tuple(steps_final),
        publishers=tuple(publishers or ()),
        retention=retention,
        timeout=timeout_minutes * 60 if timeout_minutes is not None else None,
        trigger=trigger or NoTrigger(),
        scm=scm,
        env=tuple(sorted((k, str(v)) for k, v in (env or {}).items())),
        parameters=tuple((k, str(v)) for k, v in (parameters or {}).items()),
        timestamps=timestamps,
        description=description,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._steps: list[Step] = []
        self._publishers: list[Publisher] = []
        self._scm: Optional[GitSCM] = None
        self._trigger: Trigger = NoTrigger()
        self._env: dict[str, str] = {}
        self._parameters: dict[str, str] = {}
        self._retention: Optional[Retention] = None
        self._timeout: Optional[float] = None
        self._timestamps: bool = True
        self._description = ""

    def defaults(self, builds_to_keep: int = 50, artifacts_to_keep: int = 10, timeout_minutes: float = 40):
        """Log rotation, an absolute timeout and timestamps: the must-have defaults for any job."""
        self._retention = Retention(builds_to_keep=builds_to_keep, artifacts_to_keep=artifacts_to_keep)
        self._timeout = timeout_minutes * 60
        self._timestamps = True
        return self

    def git(self, url: str, branch: str = "master", credentials_id: str = "jenkins"):
        self._scm = git(url, branch=branch, credentials_id=credentials_id)
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None):
        self._steps.append(Step(name=name, run=run, cwd=cwd))
        return self

    def shell(self, run: str, cwd: str | None = None):
        return self.define_step(run.split()[0] if run.split() else "shell", run, cwd=cwd)

    def publish(self, *publishers: Publisher):
        self._publishers.extend(publishers)
        return self

    def triggered_by(self, trigger: Trigger):
        self._trigger = trigger
        return self

    def with_env(self, **env):
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def string_param(self, name: str, default: str = ""):
        self._parameters[name] = default
        return self

    def describe(self, text: str):
        self._description = text
        return self

    def build(self) -> Job:
        if not self._steps:
            raise ValueError(f"Job '{self.name}' has no steps")

        return Job(
            name=self.name,
            steps=tuple(self._steps),
            publishers=tuple(self._publishers),
            retention=self._retention,
            timeout=self._timeout,
            trigger=self._trigger,
            scm=self._scm,
            env=tuple(sorted(self._env.items())),
            parameters=tuple(self._parameters.items()),
            timestamps=self._timestamps,
            description=self._description,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Workflow: registry + pipelines + views in one object
# ---------------------------------------------------------------------

@dataclass
class Workflow:
    registry: JobRegistry
    pipelines: Dict[str, Pipeline] = field(default_factory=dict)
    views: List[View] = field(default_factory=list)

    def pipeline(self, name: str | None = None) -> Pipeline:
        if name is None:
            if len(self.pipelines) != 1:
                raise KeyError(
                    f"Workflow defines {len(self.pipelines)} pipelines, pick one of {sorted(self.pipelines)}"
                )
            return next(iter(self.pipelines.values()))
        try:
            return self.pipelines[name]
        except KeyError:
            raise KeyError(f"No pipeline named {name!r}; known: {sorted(self.pipelines)}") from None


def wf(registry: JobRegistry, *pipelines: Pipeline, views: Iterable[View] = ()) -> Workflow:
    """
    Workflow definition helper.

        def workflow(settings):
            registry = JobRegistry(settings)
            registry.register_all(job(...), job(...))
            return wf(registry, build_pipeline("main", sequential(...), registry))
    """
    return Workflow(registry=registry, pipelines={p.name: p for p in pipelines}, views=list(views))
