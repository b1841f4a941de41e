import json
import textwrap

import pytest
from click.testing import CliRunner

from buildflow.cli import cli
from buildflow.errors import ConfigurationError
from buildflow.model import ParallelStage, PollSCM, UpstreamTrigger
from buildflow.roadshow import workflow


class TestRoadshowWorkflow:
    def test_jobs_are_namespaced_by_user(self, settings):
        wf = workflow(settings)
        assert wf.registry.names() == [
            "alice.roadshow.generated.build",
            "alice.roadshow.generated.staticanalysis",
            "alice.roadshow.buildflow.build",
            "alice.roadshow.buildflow.test",
            "alice.roadshow.buildflow.metrics",
            "alice.roadshow.buildflow.promote",
        ]

    def test_buildflow_pipeline_shape(self, settings):
        p = workflow(settings).pipeline("alice.roadshow.buildflow")
        assert p.stages[1] == ParallelStage(("alice.roadshow.buildflow.test", "alice.roadshow.buildflow.metrics"))
        assert p.promotion.source == "alice.roadshow.buildflow.build"
        assert p.promotion.job == "alice.roadshow.buildflow.promote"
        assert p.promotion.repository == "libs-snapshot-local"

    def test_generated_chain_follows_triggers(self, settings):
        wf = workflow(settings)
        p = wf.pipeline("alice.roadshow.generated")
        assert p.job_names() == ["alice.roadshow.generated.build", "alice.roadshow.generated.staticanalysis"]
        assert isinstance(wf.registry.lookup(p.job_names()[0]).trigger, PollSCM)
        assert wf.registry.lookup(p.job_names()[1]).trigger == UpstreamTrigger("alice.roadshow.generated.build")

    def test_job_defaults(self, settings):
        build = workflow(settings).registry.lookup("alice.roadshow.buildflow.build")
        assert build.retention.builds_to_keep == 50
        assert build.retention.artifacts_to_keep == 10
        assert build.timeout == 40 * 60
        assert build.scm.url == "git@github.com:alice/roadshow.git"
        assert build.scm.credentials_id == "jenkins"

    def test_view_lists_all_user_jobs(self, settings):
        wf = workflow(settings)
        [view] = wf.views
        assert view.name == "alice"
        assert len(wf.registry.matching(view.regex)) == 6

    def test_user_is_required(self, settings):
        with pytest.raises(ConfigurationError):
            workflow(settings.replace(github_user=""))


@pytest.fixture
def cli_env(tmp_path):
    return {"GITHUB_USER": "alice", "BUILDFLOW_HOME": str(tmp_path / "home")}


class TestCli:
    def test_generate_prints_configuration(self, cli_env):
        result = CliRunner().invoke(cli, ["generate"], env=cli_env)

        assert result.exit_code == 0, result.output
        doc = json.loads(result.stdout)
        assert doc["namespace"] == "alice"
        assert len(doc["jobs"]) == 6
        assert [p["name"] for p in doc["pipelines"]] == ["alice.roadshow.buildflow", "alice.roadshow.generated"]
        assert doc["views"][0]["jobs"][0] == "alice.roadshow.generated.build"

    def test_generate_to_file(self, cli_env, tmp_path):
        out = tmp_path / "jobs.json"
        result = CliRunner().invoke(cli, ["generate", "-o", str(out)], env=cli_env)
        assert result.exit_code == 0, result.output
        assert json.loads(out.read_text())["namespace"] == "alice"

    def test_missing_user_exits_with_error(self, cli_env):
        cli_env["GITHUB_USER"] = None
        result = CliRunner().invoke(cli, ["generate"], env=cli_env)
        assert result.exit_code == 1
        assert "GITHUB_USER" in result.output

    def test_jobs_lists_view(self, cli_env):
        result = CliRunner().invoke(cli, ["jobs"], env=cli_env)
        assert result.exit_code == 0, result.output
        assert "alice.roadshow.buildflow.promote" in result.output

    def test_run_without_pipeline_name_is_ambiguous(self, cli_env):
        result = CliRunner().invoke(cli, ["run"], env=cli_env)
        assert result.exit_code == 1
        assert "pick one of" in result.output


WORKFLOW = textwrap.dedent("""
    from buildflow import JobRegistry, build_pipeline, job, parallel, promote, sequential, sh, wf
    from buildflow.dsl import archive

    def workflow(settings):
        n = settings.job_name
        registry = JobRegistry(settings)
        registry.register_all(
            job(n("build"), sh("war", "mkdir -p out && echo war-$BUILD_NUMBER > out/app.war"),
                publishers=[archive("out/*.war")]),
            job(n("test"), sh("test", "exit $FAIL_TESTS")),
            job(n("metrics"), sh("metrics", "true")),
        )
        pipeline = build_pipeline(
            "main",
            sequential(n("build"), parallel(n("test"), n("metrics")), promote(source=n("build"))),
            registry,
        )
        return wf(registry, pipeline)
""")


class TestRunAndPromote:
    @pytest.fixture
    def workflow_file(self, tmp_path):
        path = tmp_path / "ci.py"
        path.write_text(WORKFLOW)
        return str(path)

    def test_run_promotes_the_build(self, cli_env, workflow_file, tmp_path):
        cli_env["FAIL_TESTS"] = "0"
        result = CliRunner().invoke(cli, ["--workflow", workflow_file, "run"], env=cli_env)

        assert result.exit_code == 0, result.output
        promoted = tmp_path / "home" / "artifacts" / "libs-snapshot-local" / "app.war"
        assert promoted.read_text() == "war-1\n"
        assert "STATUS: SUCCEEDED" in result.output

    def test_failed_run_exits_non_zero_and_promote_later(self, cli_env, workflow_file, tmp_path):
        cli_env["FAIL_TESTS"] = "1"
        failed = CliRunner().invoke(cli, ["--workflow", workflow_file, "run", "main"], env=cli_env)

        assert failed.exit_code == 1
        assert not (tmp_path / "home" / "artifacts").exists()

        promoted = CliRunner().invoke(cli, ["promote", "alice.build", "1", "--repository", "releases"], env=cli_env)

        assert promoted.exit_code == 0, promoted.output
        assert (tmp_path / "home" / "artifacts" / "releases" / "app.war").read_text() == "war-1\n"

    def test_promote_unknown_build(self, cli_env):
        result = CliRunner().invoke(cli, ["promote", "alice.build"], env=cli_env)
        assert result.exit_code == 1
        assert "Nothing to promote" in result.output
