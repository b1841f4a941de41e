# publishers.py
# Post-build actions. Each publisher kind maps to one function that looks at
# the job workspace after the steps ran and returns a small report dict.
from __future__ import annotations

import re
import shutil
import xml.etree.ElementTree as ET
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .model import (
    ArchiveArtifacts,
    ArchiveTestResults,
    ArtifactReference,
    CodeCoverageReport,
    Job,
    StaticAnalysisReport,
)


@dataclass
class PublishContext:
    job: Job
    build_number: int
    workspace: Path
    succeeded: bool
    archive_dir: Optional[Path] = None  # None: reference files in place
    console_log: List[str] = field(default_factory=list)
    artifacts: List[ArtifactReference] = field(default_factory=list)


def _relpath(p: Path, root: Path) -> str:
    return str(p.resolve().relative_to(root.resolve())).replace("\\", "/")


def _match_files(workspace: Path, pattern: str) -> List[Path]:
    out = []
    for p in sorted(workspace.glob(pattern)):
        if p.is_file() and ".git" not in p.relative_to(workspace).parts:
            out.append(p)
    return out


def _parse_xml(path: Path) -> Optional[ET.Element]:
    try:
        return ET.parse(path).getroot()
    except (ET.ParseError, OSError):
        return None


# ---------------------------------------------------------------------
# archive-artifact
# ---------------------------------------------------------------------

def _archive(pub: ArchiveArtifacts, ctx: PublishContext) -> Tuple[str, dict]:
    if pub.only_if_successful and not ctx.succeeded:
        return pub.kind, {"archived": 0, "skipped": "build failed"}

    archived: List[str] = []
    for f in _match_files(ctx.workspace, pub.pattern):
        rel = _relpath(f, ctx.workspace)
        location = f
        if ctx.archive_dir is not None:
            location = ctx.archive_dir / rel
            location.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(f, location)
        ctx.artifacts.append(ArtifactReference(id=f"{ctx.job.name}#{ctx.build_number}/{rel}", location=location))
        archived.append(rel)

    return pub.kind, {"archived": len(archived), "files": archived}


# ---------------------------------------------------------------------
# archive-test-results (JUnit XML)
# ---------------------------------------------------------------------

def _junit(pub: ArchiveTestResults, ctx: PublishContext) -> Tuple[str, dict]:
    totals = Counter(files=0, unparsed=0, tests=0, failures=0, errors=0, skipped=0)
    for f in _match_files(ctx.workspace, pub.pattern):
        root = _parse_xml(f)
        if root is None:
            totals["unparsed"] += 1
            continue
        totals["files"] += 1
        suites = [root] if root.tag == "testsuite" else list(root.iter("testsuite"))
        for suite in suites:
            for key in ("tests", "failures", "errors", "skipped"):
                try:
                    totals[key] += int(suite.get(key, "0"))
                except ValueError:
                    pass
    return pub.kind, dict(totals)


# ---------------------------------------------------------------------
# static-analysis-report
# ---------------------------------------------------------------------

_WARNING_LINE = re.compile(r"\bwarning:", re.IGNORECASE)


def _checkstyle(pub: StaticAnalysisReport, ctx: PublishContext) -> dict:
    by_severity: Counter = Counter()
    files = 0
    for f in _match_files(ctx.workspace, pub.pattern):
        root = _parse_xml(f)
        if root is None:
            continue
        files += 1
        for err in root.iter("error"):
            by_severity[err.get("severity", "error")] += 1
    return {"files": files, "issues": sum(by_severity.values()), "by_severity": dict(by_severity)}


def _pmd(pub: StaticAnalysisReport, ctx: PublishContext) -> dict:
    by_priority: Counter = Counter()
    files = 0
    for f in _match_files(ctx.workspace, pub.pattern):
        root = _parse_xml(f)
        if root is None:
            continue
        files += 1
        # PMD reports are namespaced; match on the local tag name
        for el in root.iter():
            if el.tag.rsplit("}", 1)[-1] == "violation":
                by_priority[el.get("priority", "?")] += 1
    return {"files": files, "issues": sum(by_priority.values()), "by_priority": dict(by_priority)}


def _tasks(pub: StaticAnalysisReport, ctx: PublishContext) -> dict:
    marker_re = re.compile(r"\b(" + "|".join(re.escape(m) for m in pub.markers) + r")\b")
    counts: Counter = Counter()
    for f in _match_files(ctx.workspace, pub.pattern):
        try:
            text = f.read_text(encoding="utf-8")
        except (UnicodeDecodeError, OSError):
            continue
        for m in marker_re.finditer(text):
            counts[m.group(1)] += 1
    return {"issues": sum(counts.values()), "by_marker": {m: counts.get(m, 0) for m in pub.markers}}


def _warnings(pub: StaticAnalysisReport, ctx: PublishContext) -> dict:
    hits = [line for line in ctx.console_log if _WARNING_LINE.search(line)]
    return {"issues": len(hits)}


_ANALYZERS: Dict[str, Callable[[StaticAnalysisReport, PublishContext], dict]] = {
    "checkstyle": _checkstyle,
    "pmd": _pmd,
    "tasks": _tasks,
    "warnings": _warnings,
}


def _static_analysis(pub: StaticAnalysisReport, ctx: PublishContext) -> Tuple[str, dict]:
    return pub.tool, _ANALYZERS[pub.tool](pub, ctx)


# ---------------------------------------------------------------------
# code-coverage-report (JaCoCo XML)
# ---------------------------------------------------------------------

def _coverage(pub: CodeCoverageReport, ctx: PublishContext) -> Tuple[str, dict]:
    covered: Counter = Counter()
    missed: Counter = Counter()
    files = 0
    for f in _match_files(ctx.workspace, pub.pattern):
        root = _parse_xml(f)
        if root is None or root.tag != "report":
            continue
        files += 1
        # report-level counters are the direct children of <report>
        for counter in root.findall("counter"):
            kind = counter.get("type", "?")
            covered[kind] += int(counter.get("covered", "0"))
            missed[kind] += int(counter.get("missed", "0"))

    coverage = {}
    for kind in sorted(set(covered) | set(missed)):
        total = covered[kind] + missed[kind]
        coverage[kind.lower()] = round(100.0 * covered[kind] / total, 2) if total else 0.0
    return pub.kind, {"files": files, "coverage": coverage}


_PUBLISHERS: Dict[type, Callable[..., Tuple[str, dict]]] = {
    ArchiveArtifacts: _archive,
    ArchiveTestResults: _junit,
    StaticAnalysisReport: _static_analysis,
    CodeCoverageReport: _coverage,
}


def run_publishers(ctx: PublishContext) -> Tuple[Tuple[ArtifactReference, ...], Dict[str, dict]]:
    """Run every publisher of `ctx.job`; returns (artifacts, reports by name)."""
    reports: Dict[str, dict] = {}
    for pub in ctx.job.publishers:
        name, report = _PUBLISHERS[type(pub)](pub, ctx)
        reports[name] = report
    return tuple(ctx.artifacts), reports

