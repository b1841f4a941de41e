# cli.py
from __future__ import annotations

import signal
import sys
from pathlib import Path

import click

from buildflow.artifacts import store_from_settings
from buildflow.config import Settings
from buildflow.dsl import Workflow
from buildflow.errors import BuildFlowError, ConfigurationError, UnresolvedArtifactError
from buildflow.executor import PipelineExecutor
from buildflow.history import BuildHistory
from buildflow.promotion import PromotionGate
from buildflow.roadshow import workflow as roadshow_workflow
from buildflow.runner import ShellRunner, load_workflow
from buildflow.schemas import WorkflowDocument
from buildflow.ui.console import Console, get_console, set_console


def load(ctx: click.Context) -> Workflow:
    """
    Build the workflow for the current settings, or exit(1) on a
    configuration error.
    """
    console = get_console()
    settings: Settings = ctx.obj["settings"]
    workflow_file = ctx.obj["workflow"]
    try:
        if workflow_file:
            return load_workflow(workflow_file, settings)
        return roadshow_workflow(settings)
    except (ConfigurationError, ValueError, TypeError, FileNotFoundError) as e:
        console.print_error(
            "Invalid configuration",
            str(e),
            suggestion="Fix the job definitions and run:\n  buildflow generate",
        )
        if ctx.obj.get("debug", False):
            console.print_exception(e)
        sys.exit(1)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.option("--user", envvar="GITHUB_USER", default=None, help="Account used to namespace job names")
@click.option("--home", envvar="BUILDFLOW_HOME", default=None, help="State directory (builds, workspaces)")
@click.option("--workflow", default=None, help="Workflow file defining workflow(settings); defaults to roadshow")
@click.pass_context
def cli(ctx, debug, user, home, workflow):
    """buildflow: build -> parallel checks -> promote pipelines."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["workflow"] = workflow
    try:
        ctx.obj["settings"] = Settings.from_env(
            github_user=user,
            home=Path(home).expanduser() if home else None,
        )
    except ConfigurationError as e:
        console.print_error("Invalid configuration", str(e))
        sys.exit(1)


@cli.command()
@click.option("--output", "-o", type=click.Path(dir_okay=False), default=None, help="Write JSON here instead of stdout")
@click.pass_context
def generate(ctx, output):
    """Validate all jobs and pipelines and print the configuration as JSON."""
    wf = load(ctx)
    settings: Settings = ctx.obj["settings"]
    doc = WorkflowDocument.from_workflow(wf, namespace=settings.github_user)
    text = doc.model_dump_json(indent=2)
    if output:
        Path(output).write_text(text + "\n", encoding="utf-8")
        get_console().print_info(
            f"Wrote {len(doc.jobs)} job(s) and {len(doc.pipelines)} pipeline(s) to {output}"
        )
    else:
        click.echo(text)


@cli.command()
@click.pass_context
def jobs(ctx):
    """List jobs, grouped by view."""
    wf = load(ctx)
    console = get_console()
    if not wf.views:
        for name in wf.registry.names():
            console.print_info(name)
        return
    for view in wf.views:
        console.print_header(f"{view.name}: {view.description}" if view.description else view.name)
        for name in wf.registry.matching(view.regex):
            console.print_info(f"  {name}")


@cli.command()
@click.argument("pipeline", required=False)
@click.option("--workers", default=None, type=int, help="Number of parallel workers")
@click.pass_context
def run(ctx, pipeline, workers):
    """Run a pipeline (the only one, or PIPELINE by name)."""
    console = get_console()
    settings: Settings = ctx.obj["settings"]
    wf = load(ctx)

    try:
        target = wf.pipeline(pipeline)
    except KeyError as e:
        console.print_error("Unknown pipeline", str(e.args[0]))
        sys.exit(1)

    history = BuildHistory(settings.jobs_dir)
    executor = PipelineExecutor(
        wf.registry,
        ShellRunner(settings, history),
        history=history,
        gate=PromotionGate(history, store_from_settings(settings), settings.promotion_repository),
        max_workers=workers or settings.workers,
    )

    def _abort(signum, frame):
        console.print_info(f"\nReceived signal {signum}, cancelling running jobs...")
        executor.cancel()

    previous = {sig: signal.signal(sig, _abort) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        result = executor.execute(target)
    except BuildFlowError as e:
        console.print_exception(e)
        sys.exit(1)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    if not result.succeeded:
        sys.exit(130 if result.cancelled else 1)


@cli.command(name="promote")
@click.argument("job_name")
@click.argument("build_number", required=False, type=int)
@click.option("--repository", default=None, help="Target repository (defaults to BUILDFLOW_PROMOTION_REPOSITORY)")
@click.option("--pattern", default="*", show_default=True, help="Only promote artifacts matching this file name pattern")
@click.pass_context
def promote_cmd(ctx, job_name, build_number, repository, pattern):
    """Publish the artifacts of JOB_NAME #BUILD_NUMBER (default: latest successful)."""
    console = get_console()
    settings: Settings = ctx.obj["settings"]
    history = BuildHistory(settings.jobs_dir)
    gate = PromotionGate(history, store_from_settings(settings), settings.promotion_repository)

    try:
        if build_number is None:
            outcome = gate.promote_latest(job_name, repository=repository, pattern=pattern)
        else:
            outcome = gate.promote(job_name, build_number, repository=repository, pattern=pattern)
    except UnresolvedArtifactError as e:
        console.print_error(
            "Nothing to promote",
            str(e),
            suggestion=f"Check archived builds under {history.root / job_name}",
        )
        sys.exit(1)
    except BuildFlowError as e:
        console.print_error("Promotion failed", str(e))
        sys.exit(1)

    console.print_info(outcome.summary())


if __name__ == "__main__":
    cli()
