import threading
import time

import pytest

from buildflow.artifacts import LocalArtifactStore
from buildflow.config import Settings
from buildflow.dsl import job, sh
from buildflow.history import BuildHistory
from buildflow.model import ArtifactReference, JobStatus, RunResult
from buildflow.promotion import PromotionGate
from buildflow.registry import JobRegistry
from buildflow.ui.console import Console, set_console


@pytest.fixture(autouse=True)
def console():
    c = Console(debug=False)
    set_console(c)
    return c


@pytest.fixture
def settings(tmp_path):
    return Settings(github_user="alice", home=tmp_path / "home")


@pytest.fixture
def registry(settings):
    reg = JobRegistry(settings)
    for name in ("build", "test", "metrics", "promote"):
        reg.register(job(name, sh("run", f"echo {name}")))
    return reg


# ---------------------------------------------------------------------
# Fake job functions
# ---------------------------------------------------------------------

def succeed(*, build_number=None, artifact=None, delay=0.0):
    def fn(job, ctx):
        if delay:
            time.sleep(delay)
        artifacts = ()
        n = build_number if build_number is not None else ctx.build_number
        if artifact is not None:
            artifacts = (ArtifactReference(id=f"{job.name}#{n}/{artifact.name}", location=artifact),)
        return RunResult(job=job.name, build_number=n, status=JobStatus.SUCCESS, artifacts=artifacts)
    return fn


def fail(reason="boom", *, delay=0.0):
    def fn(job, ctx):
        if delay:
            time.sleep(delay)
        return RunResult(job=job.name, build_number=ctx.build_number, status=JobStatus.FAILURE, reason=reason, exit_code=1)
    return fn


def wait_for_cancel(limit=5.0):
    def fn(job, ctx):
        ctx.cancel_event.wait(limit)
        return RunResult(job=job.name, build_number=ctx.build_number, status=JobStatus.FAILURE, reason="cancelled")
    return fn


class FakeJobs:
    """Job function that dispatches on job name and remembers every call."""

    def __init__(self, **behaviour):
        self.behaviour = dict(behaviour)
        self.calls = []
        self.contexts = {}
        self._lock = threading.Lock()

    def __call__(self, job, ctx):
        with self._lock:
            self.calls.append(job.name)
            self.contexts[job.name] = ctx
        return self.behaviour.get(job.name, succeed())(job, ctx)


class RecordingGate(PromotionGate):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.promoted = []

    def promote(self, build_job_name, build_number, **kwargs):
        self.promoted.append((build_job_name, build_number))
        return super().promote(build_job_name, build_number, **kwargs)


@pytest.fixture
def history():
    return BuildHistory()


@pytest.fixture
def store(tmp_path):
    return LocalArtifactStore(tmp_path / "repo")


@pytest.fixture
def gate(history, store):
    return RecordingGate(history, store, default_repository="libs-snapshot-local")


@pytest.fixture
def war(tmp_path):
    p = tmp_path / "out" / "app.war"
    p.parent.mkdir(parents=True)
    p.write_bytes(b"PK\x03\x04war")
    return p
