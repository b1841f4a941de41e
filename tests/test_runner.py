import time
import textwrap

import pytest

from buildflow.dsl import Workflow, archive, git, job, sh
from buildflow.history import BuildHistory
from buildflow.model import JobStatus, RunContext
from buildflow.runner import ShellRunner, load_workflow


@pytest.fixture
def runner(settings, tmp_path):
    return ShellRunner(settings, BuildHistory(tmp_path / "jobs"), workspace_root=tmp_path / "ws", poll_interval=0.02)


class TestShellRunner:
    def test_steps_run_in_the_job_workspace(self, runner, tmp_path):
        j = job("hello", sh("greet", "echo hello $BUILD_NUMBER $JOB_NAME > out.txt"))

        result = runner(j, RunContext(build_number=3))

        assert result.status is JobStatus.SUCCESS
        assert result.build_number == 3
        assert (tmp_path / "ws" / "hello" / "out.txt").read_text() == "hello 3 hello\n"

    def test_failing_step_stops_the_job(self, runner, tmp_path):
        j = job(
            "broken",
            sh("first", "exit 3"),
            sh("second", "touch second-ran"),
        )

        result = runner(j, RunContext(build_number=1))

        assert result.status is JobStatus.FAILURE
        assert result.exit_code == 3
        assert "step 'first' failed (exit=3)" in result.reason
        assert not (tmp_path / "ws" / "broken" / "second-ran").exists()

    def test_deadline_kills_the_step(self, runner):
        j = job("slow", sh("sleep", "sleep 5"))
        started = time.monotonic()

        result = runner(j, RunContext(build_number=1, deadline=time.monotonic() + 0.2))

        assert result.reason == "timeout"
        assert time.monotonic() - started < 4

    def test_cancel_kills_the_step(self, runner):
        ctx = RunContext(build_number=1)
        ctx.cancel_event.set()

        result = runner(job("slow", sh("sleep", "sleep 5")), ctx)

        assert result.status is JobStatus.FAILURE
        assert result.reason == "cancelled"

    def test_parameters_and_env_reach_the_shell(self, runner, tmp_path):
        j = job(
            "promote",
            sh("show", 'echo "$BUILD_JOB_NAME#$BUILD_JOB_NUMBER $STAGE" > params.txt'),
            parameters={"BUILD_JOB_NAME": "", "BUILD_JOB_NUMBER": "0"},
            env={"STAGE": "snapshot"},
        )

        runner(j, RunContext(build_number=1, params={"BUILD_JOB_NAME": "alice.build"}))

        assert (tmp_path / "ws" / "promote" / "params.txt").read_text() == "alice.build#0 snapshot\n"

    def test_archived_artifacts_land_in_build_history(self, runner, tmp_path):
        j = job(
            "build",
            sh("war", "mkdir -p build/libs && echo war > build/libs/RoadShow-1.war"),
            publishers=[archive("build/libs/RoadShow-*.war")],
        )

        result = runner(j, RunContext(build_number=4))

        [ref] = result.artifacts
        assert ref.location == (tmp_path / "jobs").resolve() / "build" / "builds" / "4" / "archive" / "build/libs/RoadShow-1.war"
        assert ref.location.read_text() == "war\n"
        assert result.reports["archive-artifact"]["archived"] == 1

    def test_checkout_failure_fails_the_job(self, runner, tmp_path):
        j = job("build", sh("never", "touch ran"), scm=git(str(tmp_path / "no-such-repo.git")))

        result = runner(j, RunContext(build_number=1))

        assert result.status is JobStatus.FAILURE
        assert result.reason == "scm checkout failed"
        assert not (tmp_path / "ws" / "build" / "ran").exists()


class TestLoadWorkflow:
    def test_loads_workflow_function(self, settings, tmp_path):
        path = tmp_path / "ci.py"
        path.write_text(textwrap.dedent("""
            from buildflow import JobRegistry, build_pipeline, job, sequential, sh, wf

            def workflow(settings):
                registry = JobRegistry(settings)
                registry.register(job(settings.job_name("build"), sh("run", "true")))
                return wf(registry, build_pipeline("main", sequential(settings.job_name("build")), registry))
        """))

        loaded = load_workflow(path, settings)

        assert isinstance(loaded, Workflow)
        assert loaded.pipeline().job_names() == ["alice.build"]

    def test_file_without_workflow(self, settings, tmp_path):
        path = tmp_path / "empty.py"
        path.write_text("X = 1\n")
        with pytest.raises(TypeError):
            load_workflow(path, settings)

    def test_missing_file(self, settings, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_workflow(tmp_path / "missing.py", settings)

    def test_not_a_python_file(self, settings, tmp_path):
        path = tmp_path / "ci.groovy"
        path.write_text("job('x') {}")
        with pytest.raises(ValueError):
            load_workflow(path, settings)
