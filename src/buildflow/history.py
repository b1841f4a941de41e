# history.py
from __future__ import annotations

import shutil
import threading
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional

from .model import ArtifactReference, Retention, RunResult
from .schemas import RunResultDocument

# ---------------------------------------------------------------------
# Layout (when a root is given):
#   root/
#     <job_name>/
#       nextBuildNumber
#       builds/
#         <n>/
#           result.json
#           archive/...     (files kept by the archive publisher)
#
# Without a root everything is kept in memory only (tests, dry runs).
# ---------------------------------------------------------------------


class BuildHistory:
    """Build numbers and finished RunResults per job. Safe to share between threads."""

    def __init__(self, root: str | Path | None = None):
        self.root = Path(root).resolve() if root is not None else None
        self._lock = threading.RLock()
        self._next: Dict[str, int] = {}
        self._results: Dict[str, Dict[int, RunResult]] = {}
        if self.root is not None:
            self.root.mkdir(parents=True, exist_ok=True)

    # -------------------- paths --------------------

    def _job_dir(self, job_name: str) -> Path:
        if self.root is None:
            raise RuntimeError("in-memory BuildHistory has no job directories")
        return self.root / job_name

    def build_dir(self, job_name: str, build_number: int) -> Optional[Path]:
        if self.root is None:
            return None
        return self._job_dir(job_name) / "builds" / str(build_number)

    def archive_dir(self, job_name: str, build_number: int) -> Optional[Path]:
        d = self.build_dir(job_name, build_number)
        return d / "archive" if d is not None else None

    # -------------------- build numbers --------------------

    def _load_next(self, job_name: str) -> int:
        if self.root is None:
            return 1
        f = self._job_dir(job_name) / "nextBuildNumber"
        try:
            return int(f.read_text(encoding="utf-8").strip())
        except (FileNotFoundError, ValueError):
            return 1

    def next_build_number(self, job_name: str) -> int:
        """Allocate the next build number for `job_name` (1, 2, 3, ...)."""
        with self._lock:
            n = self._next.get(job_name)
            if n is None:
                n = self._load_next(job_name)
            self._next[job_name] = n + 1
            if self.root is not None:
                d = self._job_dir(job_name)
                d.mkdir(parents=True, exist_ok=True)
                (d / "nextBuildNumber").write_text(str(n + 1), encoding="utf-8")
            return n

    # -------------------- results --------------------

    def record(self, result: RunResult, retention: Retention | None = None) -> None:
        """Store a finished result, then apply the job's retention policy."""
        with self._lock:
            self._results.setdefault(result.job, {})[result.build_number] = result
            if self.root is not None:
                d = self.build_dir(result.job, result.build_number)
                d.mkdir(parents=True, exist_ok=True)
                doc = RunResultDocument.from_result(result)
                (d / "result.json").write_text(doc.model_dump_json(indent=2), encoding="utf-8")
            if retention is not None:
                self.prune(result.job, retention)

    def _load(self, job_name: str, build_number: int) -> Optional[RunResult]:
        if self.root is None:
            return None
        f = self.build_dir(job_name, build_number) / "result.json"
        if not f.exists():
            return None
        return RunResultDocument.model_validate_json(f.read_text(encoding="utf-8")).to_result()

    def get(self, job_name: str, build_number: int) -> Optional[RunResult]:
        with self._lock:
            result = self._results.get(job_name, {}).get(build_number)
            if result is None:
                result = self._load(job_name, build_number)
                if result is not None:
                    self._results.setdefault(job_name, {})[build_number] = result
            return result

    def build_numbers(self, job_name: str) -> List[int]:
        with self._lock:
            numbers = set(self._results.get(job_name, {}))
            if self.root is not None:
                builds = self._job_dir(job_name) / "builds"
                if builds.is_dir():
                    numbers.update(int(p.name) for p in builds.iterdir() if p.name.isdigit())
            return sorted(numbers)

    def latest_successful(self, job_name: str) -> Optional[RunResult]:
        for n in reversed(self.build_numbers(job_name)):
            result = self.get(job_name, n)
            if result is not None and result.ok:
                return result
        return None

    def artifacts(self, job_name: str, build_number: int) -> List[ArtifactReference]:
        result = self.get(job_name, build_number)
        if result is None:
            return []
        return list(result.artifacts)

    # -------------------- retention --------------------

    def prune(self, job_name: str, retention: Retention) -> None:
        """
        Keep the newest `builds_to_keep` builds. Of those, only the newest
        `artifacts_to_keep` keep their archived files.
        """
        with self._lock:
            numbers = self.build_numbers(job_name)
            newest_first = list(reversed(numbers))

            for n in newest_first[retention.builds_to_keep:]:
                self._results.get(job_name, {}).pop(n, None)
                d = self.build_dir(job_name, n)
                if d is not None and d.exists():
                    shutil.rmtree(d)

            kept = newest_first[:retention.builds_to_keep]
            for n in kept[retention.artifacts_to_keep:]:
                result = self.get(job_name, n)
                if result is not None and result.artifacts:
                    stripped = replace(result, artifacts=())
                    self._results[job_name][n] = stripped
                    a = self.archive_dir(job_name, n)
                    if a is not None and a.exists():
                        shutil.rmtree(a)
                    if self.root is not None:
                        doc = RunResultDocument.from_result(stripped)
                        (self.build_dir(job_name, n) / "result.json").write_text(
                            doc.model_dump_json(indent=2), encoding="utf-8"
                        )
