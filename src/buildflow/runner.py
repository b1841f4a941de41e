# runner.py
from __future__ import annotations

import os
import runpy
import signal
import subprocess
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .config import Settings
from .dsl import Workflow
from .history import BuildHistory
from .model import Job, JobStatus, RunContext, RunResult, Step
from .publishers import PublishContext, run_publishers
from .scm import checkout, head_sha
from .ui.console import get_console

# A job function: run `job` for the build described by `ctx`, return its result.
JobFunction = Callable[[Job, RunContext], RunResult]


# ----------------------------------------------------------------------
# Workflow loading (local file)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path, settings: Settings):
    """
    Load a workflow from a python file path.

    The file must define either:
      - workflow(settings) -> Workflow
      - WORKFLOW = Workflow(...)
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix != ".py":
        raise ValueError(f"Workflow must be a .py file, got: {wf_path.name}")

    module_name = f"buildflow_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    result = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        result = globals_dict["workflow"](settings)
    elif "WORKFLOW" in globals_dict:
        result = globals_dict["WORKFLOW"]

    if not isinstance(result, Workflow):
        raise TypeError(
            "Workflow file must define workflow(settings) -> Workflow or WORKFLOW = Workflow(...)."
        )
    return result


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

def _kill(proc: subprocess.Popen) -> None:
    # steps run in their own session so the whole shell pipeline goes down
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except (ProcessLookupError, PermissionError):
        pass
    proc.wait()


def _pump(job: Job, proc: subprocess.Popen, log: List[str]) -> None:
    console = get_console()
    if proc.stdout is None:
        return
    for line in proc.stdout:
        line = line.rstrip("\n")
        log.append(line)
        console.print_output(job.name, line, timestamps=job.timestamps)


def run_step(
    job: Job,
    step: Step,
    workspace: Path,
    env: Dict[str, str],
    ctx: RunContext,
    log: List[str],
    poll_interval: float = 0.1,
) -> Tuple[Optional[int], Optional[str]]:
    """
    Run one shell step. Returns (exit_code, failure_reason); reason is None
    on success. Kills the step when the run is cancelled or the job's
    deadline passes.
    """
    cwd = (workspace / (step.cwd or ".")).resolve()
    if not cwd.exists():
        raise FileNotFoundError(f"[{job.name}] step '{step.name}' cwd not found: {cwd}")

    proc = subprocess.Popen(
        step.run,
        shell=True,
        cwd=str(cwd),
        env=env,
        text=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        start_new_session=True,
    )
    reader = threading.Thread(target=_pump, args=(job, proc, log), daemon=True)
    reader.start()

    reason: Optional[str] = None
    while True:
        try:
            proc.wait(timeout=poll_interval)
            break
        except subprocess.TimeoutExpired:
            pass
        if ctx.cancelled:
            reason = "cancelled"
        elif ctx.deadline is not None and time.monotonic() >= ctx.deadline:
            reason = "timeout"
        if reason:
            _kill(proc)
            break

    reader.join(timeout=5)
    if reason is None and proc.returncode != 0:
        reason = f"step '{step.name}' failed (exit={proc.returncode}): {step.run}"
    return proc.returncode, reason


def job_env(job: Job, ctx: RunContext, workspace: Path) -> Dict[str, str]:
    env = os.environ.copy()
    env.update(job.env_dict)
    env.update(job.parameter_defaults)
    env.update(ctx.params)
    env.update({
        "BUILD_NUMBER": str(ctx.build_number),
        "JOB_NAME": job.name,
        "WORKSPACE": str(workspace),
    })
    return env


class ShellRunner:
    """
    Default job function: check out sources, run each step through the shell,
    then run the job's publishers.
    """

    def __init__(
        self,
        settings: Settings,
        history: BuildHistory,
        *,
        workspace_root: str | Path | None = None,
        poll_interval: float = 0.1,
    ):
        self.settings = settings
        self.history = history
        self.workspace_root = Path(workspace_root or settings.workspace_dir).resolve()
        self.poll_interval = poll_interval

    def workspace(self, job: Job) -> Path:
        ws = self.workspace_root / job.name
        ws.mkdir(parents=True, exist_ok=True)
        return ws

    def __call__(self, job: Job, ctx: RunContext) -> RunResult:
        console = get_console()
        started_at = datetime.now(timezone.utc)
        t0 = time.monotonic()
        ws = self.workspace(job)
        reports: Dict[str, dict] = {}

        def finish(status: JobStatus, reason=None, exit_code=None, artifacts=()) -> RunResult:
            return RunResult(
                job=job.name,
                build_number=ctx.build_number,
                status=status,
                reason=reason,
                exit_code=exit_code,
                artifacts=tuple(artifacts),
                reports=reports,
                started_at=started_at,
                duration=time.monotonic() - t0,
            )

        # ---- checkout ----
        if job.scm is not None:
            if not checkout(job.scm, ws):
                return finish(JobStatus.FAILURE, reason="scm checkout failed")
            reports["scm"] = {"url": job.scm.url, "branch": job.scm.branch, "commit": head_sha(ws)}

        # ---- run steps ----
        env = job_env(job, ctx, ws)
        log: List[str] = []
        exit_code: Optional[int] = None
        reason: Optional[str] = None
        for step in job.steps:
            console.print_step(job.name, step.name)
            exit_code, reason = run_step(job, step, ws, env, ctx, log, self.poll_interval)
            if reason:
                break

        # ---- publishers ----
        pctx = PublishContext(
            job=job,
            build_number=ctx.build_number,
            workspace=ws,
            succeeded=reason is None,
            archive_dir=self.history.archive_dir(job.name, ctx.build_number),
            console_log=log,
        )
        artifacts, published = run_publishers(pctx)
        reports.update(published)

        if reason:
            return finish(JobStatus.FAILURE, reason=reason, exit_code=exit_code, artifacts=artifacts)
        return finish(JobStatus.SUCCESS, exit_code=exit_code, artifacts=artifacts)
