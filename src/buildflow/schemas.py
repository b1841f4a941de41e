# schemas.py
# Serialized shapes: the generated configuration document and the build
# records kept on disk.
from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field

from .model import (
    ArtifactReference,
    GitSCM,
    Job,
    JobStatus,
    Pipeline,
    Promotion,
    ParallelStage,
    RunResult,
    View,
)


# -------------------- Build records --------------------

class ArtifactDocument(BaseModel):
    id: str
    location: str

    @classmethod
    def from_ref(cls, ref: ArtifactReference) -> ArtifactDocument:
        return cls(id=ref.id, location=str(ref.location))

    def to_ref(self) -> ArtifactReference:
        return ArtifactReference(id=self.id, location=Path(self.location))


class RunResultDocument(BaseModel):
    job: str
    build_number: int
    status: JobStatus
    reason: Optional[str] = None
    exit_code: Optional[int] = None
    artifacts: list[ArtifactDocument] = Field(default_factory=list)
    reports: dict[str, dict[str, Any]] = Field(default_factory=dict)
    started_at: Optional[datetime] = None
    duration: float = 0.0

    @classmethod
    def from_result(cls, result: RunResult) -> RunResultDocument:
        return cls(
            job=result.job,
            build_number=result.build_number,
            status=result.status,
            reason=result.reason,
            exit_code=result.exit_code,
            artifacts=[ArtifactDocument.from_ref(a) for a in result.artifacts],
            reports=dict(result.reports),
            started_at=result.started_at,
            duration=result.duration,
        )

    def to_result(self) -> RunResult:
        return RunResult(
            job=self.job,
            build_number=self.build_number,
            status=self.status,
            reason=self.reason,
            exit_code=self.exit_code,
            artifacts=tuple(a.to_ref() for a in self.artifacts),
            reports=dict(self.reports),
            started_at=self.started_at,
            duration=self.duration,
        )


# -------------------- Configuration document --------------------

class StepDocument(BaseModel):
    name: str
    run: str
    cwd: Optional[str] = None


class PublisherDocument(BaseModel):
    kind: str
    options: dict[str, Any] = Field(default_factory=dict)


class TriggerDocument(BaseModel):
    kind: str
    options: dict[str, Any] = Field(default_factory=dict)


class ScmDocument(BaseModel):
    url: str
    branch: str
    credentials_id: str
    remote: str
    clean_before_checkout: bool

    @classmethod
    def from_scm(cls, scm: GitSCM) -> ScmDocument:
        return cls(**asdict(scm))


class JobDocument(BaseModel):
    name: str
    description: str = ""
    steps: list[StepDocument]
    publishers: list[PublisherDocument] = Field(default_factory=list)
    trigger: TriggerDocument
    scm: Optional[ScmDocument] = None
    builds_to_keep: Optional[int] = None
    artifacts_to_keep: Optional[int] = None
    timeout_seconds: Optional[float] = None
    timestamps: bool = True
    parameters: dict[str, str] = Field(default_factory=dict)
    env: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_job(cls, job: Job) -> JobDocument:
        return cls(
            name=job.name,
            description=job.description,
            steps=[StepDocument(name=s.name, run=s.run, cwd=s.cwd) for s in job.steps],
            publishers=[PublisherDocument(kind=p.kind, options=asdict(p)) for p in job.publishers],
            trigger=TriggerDocument(kind=job.trigger.kind, options=asdict(job.trigger)),
            scm=ScmDocument.from_scm(job.scm) if job.scm else None,
            builds_to_keep=job.retention.builds_to_keep if job.retention else None,
            artifacts_to_keep=job.retention.artifacts_to_keep if job.retention else None,
            timeout_seconds=job.timeout,
            timestamps=job.timestamps,
            parameters=job.parameter_defaults,
            env=job.env_dict,
        )


class StageDocument(BaseModel):
    kind: str  # job | parallel
    jobs: list[str]


class PromotionDocument(BaseModel):
    source: str
    job: Optional[str] = None
    repository: Optional[str] = None
    pattern: str = "*"

    @classmethod
    def from_promotion(cls, promotion: Promotion) -> PromotionDocument:
        return cls(**asdict(promotion))


class PipelineDocument(BaseModel):
    name: str
    stages: list[StageDocument]
    promotion: Optional[PromotionDocument] = None

    @classmethod
    def from_pipeline(cls, pipeline: Pipeline) -> PipelineDocument:
        stages = [
            StageDocument(kind="parallel" if isinstance(s, ParallelStage) else "job", jobs=list(s.jobs))
            for s in pipeline.stages
        ]
        return cls(
            name=pipeline.name,
            stages=stages,
            promotion=PromotionDocument.from_promotion(pipeline.promotion) if pipeline.promotion else None,
        )


class ViewDocument(BaseModel):
    name: str
    description: str = ""
    regex: str
    columns: list[str]
    jobs: list[str]


class WorkflowDocument(BaseModel):
    namespace: str
    jobs: list[JobDocument]
    pipelines: list[PipelineDocument]
    views: list[ViewDocument] = Field(default_factory=list)

    @classmethod
    def from_workflow(cls, workflow, namespace: str = "") -> WorkflowDocument:
        registry = workflow.registry
        return cls(
            namespace=namespace,
            jobs=[JobDocument.from_job(j) for j in registry],
            pipelines=[PipelineDocument.from_pipeline(p) for p in workflow.pipelines.values()],
            views=[_view_document(v, registry.matching(v.regex)) for v in workflow.views],
        )


def _view_document(view: View, jobs: list[str]) -> ViewDocument:
    return ViewDocument(
        name=view.name,
        description=view.description,
        regex=view.regex,
        columns=list(view.columns),
        jobs=jobs,
    )
