# graph.py
from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple, Union

from .errors import (
    ConfigurationError,
    EmptyPipelineError,
    InvalidPipelineError,
    UnknownJobError,
)
from .model import JobStage, ParallelStage, Pipeline, Promotion, Stage, UpstreamTrigger
from .registry import JobRegistry

StageLike = Union[str, JobStage, ParallelStage, Promotion]


# ---------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class PipelineDefinition:
    """Unvalidated stage list as written by the user."""
    stages: Tuple[Union[Stage, Promotion], ...]


def _as_stage(item: StageLike) -> Union[Stage, Promotion]:
    if isinstance(item, str):
        return JobStage(item)
    if isinstance(item, (JobStage, ParallelStage, Promotion)):
        return item
    raise TypeError(f"Not a stage: {item!r}")


def sequential(*stages: StageLike) -> PipelineDefinition:
    """Run `stages` one after another, in the given order."""
    return PipelineDefinition(tuple(_as_stage(s) for s in stages))


def parallel(*jobs: str) -> ParallelStage:
    """Run `jobs` concurrently; no ordering guarantee among them."""
    for j in jobs:
        if not isinstance(j, str):
            raise TypeError(f"parallel() takes job names, got {j!r}")
    return ParallelStage(tuple(jobs))


def promote(
    job: Optional[str] = None,
    *,
    source: str,
    repository: Optional[str] = None,
    pattern: str = "*",
) -> Promotion:
    return Promotion(source=source, job=job, repository=repository, pattern=pattern)


# ---------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------

def validate_pipeline(
    name: str,
    definition: PipelineDefinition,
    registry: JobRegistry,
) -> List[ConfigurationError]:
    """
    Return every problem with `definition`, in stage order.

    Pure: the same registry and definition always give the same list.
    """
    errors: List[ConfigurationError] = []
    items = list(definition.stages)

    if not any(not isinstance(s, Promotion) for s in items):
        errors.append(EmptyPipelineError(name))

    seen: Set[str] = set()
    single_jobs: List[str] = []

    def check_job(job_name: str) -> None:
        if job_name not in registry:
            errors.append(UnknownJobError(job_name, name))
        if job_name in seen:
            errors.append(InvalidPipelineError(
                f"Job '{job_name}' appears more than once in pipeline '{name}'"
            ))
        seen.add(job_name)

    for idx, item in enumerate(items):
        if isinstance(item, Promotion):
            if idx != len(items) - 1:
                errors.append(InvalidPipelineError(
                    f"Promotion must be the last stage of pipeline '{name}'"
                ))
            if item.source not in single_jobs:
                errors.append(InvalidPipelineError(
                    f"Promotion source '{item.source}' is not an earlier single-job stage "
                    f"of pipeline '{name}'"
                ))
            if item.job is not None:
                check_job(item.job)
            continue

        if isinstance(item, ParallelStage) and not item.jobs:
            errors.append(InvalidPipelineError(f"Empty parallel group in pipeline '{name}'"))
        for job_name in item.jobs:
            check_job(job_name)
        if isinstance(item, JobStage):
            single_jobs.append(item.job)

    return errors


def build_pipeline(name: str, definition: PipelineDefinition, registry: JobRegistry) -> Pipeline:
    """Validate `definition` against `registry` and return the Pipeline."""
    errors = validate_pipeline(name, definition, registry)
    if errors:
        raise errors[0]

    stages = [s for s in definition.stages if not isinstance(s, Promotion)]
    promotion = next((s for s in definition.stages if isinstance(s, Promotion)), None)
    return Pipeline(name=name, stages=tuple(stages), promotion=promotion)


# ---------------------------------------------------------------------
# Pipelines derived from upstream triggers
# ---------------------------------------------------------------------

def build_dag(registry: JobRegistry, root: str) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build the downstream graph reachable from `root` via UpstreamTrigger.

    Edge upstream -> job means job runs after upstream completes.
    """
    root_job = registry.lookup(root)

    children: Dict[str, Set[str]] = {j.name: set() for j in registry}
    for j in registry:
        trig = j.trigger
        if isinstance(trig, UpstreamTrigger):
            if trig.upstream not in children:
                raise UnknownJobError(trig.upstream)
            children[trig.upstream].add(j.name)

    # keep only what is reachable from root
    reachable: Set[str] = set()
    q = deque([root_job.name])
    while q:
        node = q.popleft()
        if node in reachable:
            continue
        reachable.add(node)
        q.extend(sorted(children[node]))

    adj = {n: {c for c in children[n] if c in reachable} for n in reachable}
    indeg = {n: 0 for n in reachable}
    for n in reachable:
        for c in adj[n]:
            indeg[c] += 1
    return adj, indeg


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Convert DAG into topological "levels" (stages).
    Each stage can run in parallel.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(sorted([n for n, d in indeg.items() if d == 0]))

    levels: List[List[str]] = []
    processed = 0

    while q:
        level_size = len(q)
        level: List[str] = []

        for _ in range(level_size):
            node = q.popleft()
            level.append(node)
            processed += 1

            for child in sorted(adj.get(node, set())):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)

        levels.append(level)

    if processed != len(indeg):
        remaining = sorted([n for n, d in indeg.items() if d > 0])
        raise InvalidPipelineError(f"Trigger graph has a cycle. Stuck jobs: {remaining}")

    return levels


def chain_from_triggers(registry: JobRegistry, root: str, name: str | None = None) -> Pipeline:
    """
    Pipeline of everything downstream of `root`, one stage per topological level.

    Pipelines stop at the first failed stage, so only SUCCESS thresholds can
    be expressed; a downstream job triggered on UNSTABLE or FAILURE is
    rejected with InvalidPipelineError.
    """
    adj, indeg = build_dag(registry, root)
    for job_name in sorted(indeg):
        trig = registry.lookup(job_name).trigger
        if job_name != root and isinstance(trig, UpstreamTrigger) and trig.threshold != "SUCCESS":
            raise InvalidPipelineError(
                f"Job '{job_name}' runs when '{trig.upstream}' ends with {trig.threshold}; "
                f"a pipeline chain only follows SUCCESS"
            )
    stages: List[StageLike] = []
    for level in topo_levels(adj, indeg):
        stages.append(level[0] if len(level) == 1 else parallel(*level))
    return build_pipeline(name or root, sequential(*stages), registry)
