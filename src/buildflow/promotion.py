# promotion.py
from __future__ import annotations

from dataclasses import dataclass, field
from fnmatch import fnmatch
from typing import List, Optional

from .artifacts import ArtifactStore
from .errors import BuildFlowError, PromotionFailure, UnresolvedArtifactError
from .history import BuildHistory
from .model import ArtifactReference
from .ui.console import get_console


@dataclass
class PromotionOutcome:
    job: str
    build_number: Optional[int]
    repository: str
    published: List[str] = field(default_factory=list)
    error: Optional[BuildFlowError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def summary(self) -> str:
        target = f"{self.job} #{self.build_number} -> {self.repository}"
        if self.ok:
            return f"{target}: published {len(self.published)} artifact(s)"
        return f"{target}: FAILED ({self.error})"


class PromotionGate:
    """
    Publishes the artifacts archived by a finished build.

    The build is always identified by job name and explicit build number;
    `promote_latest` is the only place that picks a build on its own.
    """

    def __init__(self, history: BuildHistory, store: ArtifactStore, default_repository: str = "libs-snapshot-local"):
        self.history = history
        self.store = store
        self.default_repository = default_repository

    def resolve(self, build_job_name: str, build_number: int, pattern: str = "*") -> List[ArtifactReference]:
        """Artifacts of that build whose file name matches `pattern`."""
        refs = [
            a for a in self.history.artifacts(build_job_name, build_number)
            if fnmatch(a.filename, pattern)
        ]
        if not refs:
            raise UnresolvedArtifactError(build_job_name, build_number)
        return refs

    def promote(
        self,
        build_job_name: str,
        build_number: int,
        *,
        repository: Optional[str] = None,
        pattern: str = "*",
    ) -> PromotionOutcome:
        """
        Publish the build's artifacts to `repository`.

        Raises UnresolvedArtifactError when nothing was archived for the
        build, PromotionFailure when the store rejects an artifact.
        """
        repo = repository or self.default_repository
        refs = self.resolve(build_job_name, build_number, pattern)

        published: List[str] = []
        for ref in refs:
            try:
                ok = self.store.publish(ref, repo)
            except Exception as e:
                raise PromotionFailure(build_job_name, build_number, repo, str(e)) from e
            if not ok:
                raise PromotionFailure(
                    build_job_name, build_number, repo, f"store rejected {ref.filename}"
                )
            published.append(ref.filename)

        get_console().print_promotion(build_job_name, build_number, repo, published)
        return PromotionOutcome(build_job_name, build_number, repo, published)

    def promote_latest(self, build_job_name: str, **kwargs) -> PromotionOutcome:
        latest = self.history.latest_successful(build_job_name)
        if latest is None:
            raise UnresolvedArtifactError(build_job_name, None)
        return self.promote(build_job_name, latest.build_number, **kwargs)
