"""Console output formatting utilities for buildflow."""

from __future__ import annotations

import sys
import threading
from datetime import datetime
from typing import Optional


class Console:
    """Centralized console output formatting. Safe to use from job threads."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug
        self._lock = threading.Lock()

    def _emit(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._emit(f"\n{title}", "-" * len(title))

    def print_run_started(self, pipeline: str, stage_count: int, job_count: int) -> None:
        """Print run start information."""
        self._emit(
            "\nRUN STARTED",
            f"Pipeline: {pipeline}",
            f"Stages: {stage_count}",
            f"Jobs: {job_count}",
            "",
        )

    def print_stage(self, index: int, label: str) -> None:
        self._emit(f"=== Stage {index}: {label} ===")

    def print_job_start(self, name: str, build_number: int) -> None:
        """Print job start message."""
        self._emit(f"\nJOB STARTED: {name} #{build_number}")

    def print_step(self, job: str, name: str) -> None:
        """Print step start message."""
        self._emit(f"[{job}] STEP: {name}")

    def print_output(self, job: str, line: str, timestamps: bool = True) -> None:
        """Print one line of job console output."""
        if timestamps:
            stamp = datetime.now().strftime("%H:%M:%S")
            self._emit(f"[{job}] {stamp} | {line}")
        else:
            self._emit(f"[{job}] {line}")

    def print_success(self, name: str) -> None:
        """Print success message."""
        self._emit(f"✓ {name}: success")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
    ) -> None:
        """
        Print failure message.

        Args:
            name: Job or stage name
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
        """
        lines = [f"✗ JOB FAILED: {name}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        if hint:
            lines.append(f"Hint: {hint}")
        if self.debug:
            lines.append(f"Error details: {reason}")
        else:
            lines.append(f"Error: {reason.splitlines()[0] if reason else 'Unknown error'}")
        self._emit(*lines)

    def print_results(self, run) -> None:
        """Print final results summary for a PipelineRun."""
        lines = ["", "=" * 40, f"RESULTS: {run.pipeline}", "=" * 40]
        for name, result in run.results.items():
            status = "SUCCESS" if result.ok else f"FAILED ({result.reason})"
            lines.append(f"  {name} #{result.build_number}: {status}")
        lines.append(f"STATUS: {run.state.value.upper()}")
        if run.failed_stages:
            lines.append(f"Failed stage(s): {', '.join(run.failed_stages)}")
        for artifact in run.artifacts:
            lines.append(f"Artifact: {artifact.id}")
        if run.promotion is not None:
            lines.append(f"Promotion: {run.promotion.summary()}")
        self._emit(*lines)

    def print_promotion(self, job: str, build_number: int, repository: str, published: list[str]) -> None:
        lines = [f"\nPROMOTED: {job} #{build_number} -> {repository}"]
        lines.extend(f"  {name}" for name in published)
        self._emit(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {d}" for d in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._emit(*lines, err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._emit(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._emit(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._emit(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
