# config.py
# All tunables come from the environment once, at startup, and are then passed
# around as a frozen Settings object.
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Optional

from .errors import ConfigurationError


def _int_env(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = environ.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}")
    if value < 0:
        raise ConfigurationError(f"{key} must be >= 0, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    """Immutable configuration shared by the registry, runner and CLI."""
    github_user: str = ""
    home: Path = Path(".buildflow")
    workers: Optional[int] = None

    # defaults applied to jobs that don't set their own
    builds_to_keep: int = 50
    artifacts_to_keep: int = 10
    timeout_minutes: int = 40

    artifact_url: Optional[str] = None
    promotion_repository: str = "libs-snapshot-local"
    git_host: str = "git@github.com"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides) -> Settings:
        env = os.environ if environ is None else environ
        workers = _int_env(env, "BUILDFLOW_WORKERS", 0) or None
        settings = cls(
            github_user=env.get("GITHUB_USER", "").strip(),
            home=Path(env.get("BUILDFLOW_HOME", ".buildflow")).expanduser(),
            workers=workers,
            builds_to_keep=_int_env(env, "BUILDFLOW_BUILDS_TO_KEEP", 50),
            artifacts_to_keep=_int_env(env, "BUILDFLOW_ARTIFACTS_TO_KEEP", 10),
            timeout_minutes=_int_env(env, "BUILDFLOW_TIMEOUT_MINUTES", 40),
            artifact_url=env.get("BUILDFLOW_ARTIFACT_URL") or None,
            promotion_repository=env.get("BUILDFLOW_PROMOTION_REPOSITORY", "libs-snapshot-local"),
            git_host=env.get("BUILDFLOW_GIT_HOST", "git@github.com"),
        )
        if overrides:
            settings = settings.replace(**overrides)
        return settings

    def replace(self, **changes) -> Settings:
        changes = {k: v for k, v in changes.items() if v is not None}
        return replace(self, **changes)

    def require_user(self) -> str:
        if not self.github_user:
            raise ConfigurationError(
                "GITHUB_USER is not set; it is needed to namespace generated job names"
            )
        return self.github_user

    def job_name(self, suffix: str) -> str:
        """Namespace a job name with the configured user: '<user>.<suffix>'."""
        return f"{self.require_user()}.{suffix}"

    def repo_url(self, repo: str) -> str:
        return f"{self.git_host}:{self.require_user()}/{repo}.git"

    @property
    def jobs_dir(self) -> Path:
        return self.home / "jobs"

    @property
    def workspace_dir(self) -> Path:
        return self.home / "workspace"

    @property
    def artifact_store_dir(self) -> Path:
        return self.home / "artifacts"
