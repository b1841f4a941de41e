# roadshow.py
# Jobs, view and pipelines for the "roadshow" demo application, namespaced
# by the configured GitHub user so several users can share one server.
from __future__ import annotations

from .config import Settings
from .dsl import (
    Workflow,
    archive,
    build,
    checkstyle,
    jacoco,
    junit,
    pmd,
    poll_scm,
    tasks,
    upstream,
    warnings,
    wf,
)
from .graph import build_pipeline, chain_from_triggers, parallel, promote, sequential
from .model import View
from .registry import JobRegistry

REPO = "roadshow"
WAR_PATTERN = "build/libs/RoadShow-*.war"


def _base(settings: Settings, suffix: str, *, scm: bool = True):
    b = build(settings.job_name(suffix)).defaults(
        builds_to_keep=settings.builds_to_keep,
        artifacts_to_keep=settings.artifacts_to_keep,
        timeout_minutes=settings.timeout_minutes,
    )
    if scm:
        b.git(settings.repo_url(REPO))
    return b


def generated_jobs(settings: Settings):
    """Build on every commit, then static analysis once the build passes."""
    build_job = (
        _base(settings, "roadshow.generated.build")
        .describe("Verify that we can build war, run unit tests and measure code coverage")
        .triggered_by(poll_scm("* * * * *"))
        .define_step("Build war, test, coverage", "./gradlew clean war jenkinstest jacoco")
        .define_step("Greeting", "echo 'Hello, world!!'")
        .publish(jacoco(), junit("build/test-results/*.xml"), warnings())
        .build()
    )
    analysis = (
        _base(settings, "roadshow.generated.staticanalysis")
        .describe("Run static analysis and post results")
        .triggered_by(upstream(build_job.name, "SUCCESS"))
        .define_step("Static analysis", "./gradlew staticanalysis")
        .publish(
            checkstyle("build/reports/checkstyle/*.xml"),
            pmd("build/reports/pmd/*.xml"),
            tasks("**/*", "FIXME", "TODO"),
        )
        .build()
    )
    return [build_job, analysis]


def buildflow_jobs(settings: Settings):
    """The four jobs behind the build -> (test | metrics) -> promote pipeline."""
    user = settings.require_user()
    build_job = (
        _base(settings, "roadshow.buildflow.build")
        .define_step("Build war", f"./gradlew war -DbuildNumber={user}-${{BUILD_NUMBER}}")
        .publish(archive(WAR_PATTERN, only_if_successful=True))
        .build()
    )
    test_job = (
        _base(settings, "roadshow.buildflow.test")
        .define_step("Unit tests", "./gradlew test")
        .publish(junit("build/test-results/*.xml"))
        .build()
    )
    metrics_job = (
        _base(settings, "roadshow.buildflow.metrics")
        .define_step("Checks", "./gradlew check")
        .publish(
            checkstyle("build/reports/checkstyle/*.xml"),
            pmd("build/reports/pmd/*.xml"),
            tasks("**/*", "FIXME", "TODO"),
            jacoco(),
            junit("build/test-results/*.xml"),
            warnings(),
        )
        .build()
    )
    promote_job = (
        _base(settings, "roadshow.buildflow.promote", scm=False)
        .string_param("BUILD_JOB_NAME", "")
        .string_param("BUILD_JOB_NUMBER", "")
        .define_step("Announce", 'echo "Promoting ${BUILD_JOB_NAME} #${BUILD_JOB_NUMBER}"')
        .build()
    )
    return [build_job, test_job, metrics_job, promote_job]


def workflow(settings: Settings) -> Workflow:
    user = settings.require_user()
    registry = JobRegistry(settings)
    registry.register_all(*generated_jobs(settings), *buildflow_jobs(settings))

    name = settings.job_name
    buildflow = build_pipeline(
        name("roadshow.buildflow"),
        sequential(
            name("roadshow.buildflow.build"),
            parallel(name("roadshow.buildflow.test"), name("roadshow.buildflow.metrics")),
            promote(
                name("roadshow.buildflow.promote"),
                source=name("roadshow.buildflow.build"),
                repository=settings.promotion_repository,
                pattern="*.war",
            ),
        ),
        registry,
    )
    generated = chain_from_triggers(
        registry, name("roadshow.generated.build"), name("roadshow.generated")
    )

    view = View(
        name=user,
        regex=rf"{user}\..+",
        description=f"All jobs for GitHub user {user}",
    )
    return wf(registry, buildflow, generated, views=[view])
