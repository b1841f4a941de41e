# registry.py
from __future__ import annotations

import re
import threading
from dataclasses import replace
from typing import Dict, Iterator, List, Optional

from .config import Settings
from .errors import DuplicateJobError, NotFoundError, RegistryFrozenError
from .model import Job, Retention


class JobRegistry:
    """
    Holds job definitions by name.

    Jobs that don't declare retention or a timeout get the defaults from
    Settings when registered. Once frozen (the executor freezes the registry
    when a run starts) the registry is read-only.
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or Settings()
        self._jobs: Dict[str, Job] = {}
        self._frozen = False
        self._lock = threading.Lock()

    def _with_defaults(self, job: Job) -> Job:
        changes = {}
        if job.retention is None:
            changes["retention"] = Retention(
                builds_to_keep=self.settings.builds_to_keep,
                artifacts_to_keep=self.settings.artifacts_to_keep,
            )
        if job.timeout is None and self.settings.timeout_minutes > 0:
            changes["timeout"] = float(self.settings.timeout_minutes * 60)
        return replace(job, **changes) if changes else job

    def register(self, job: Job) -> Job:
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(job.name)
            if job.name in self._jobs:
                raise DuplicateJobError(job.name)
            job = self._with_defaults(job)
            self._jobs[job.name] = job
            return job

    def register_all(self, *jobs: Job) -> List[Job]:
        return [self.register(j) for j in jobs]

    def lookup(self, name: str) -> Job:
        try:
            return self._jobs[name]
        except KeyError:
            raise NotFoundError(name) from None

    def get(self, name: str) -> Optional[Job]:
        return self._jobs.get(name)

    def freeze(self) -> JobRegistry:
        with self._lock:
            self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def snapshot(self) -> Dict[str, Job]:
        return dict(self._jobs)

    def matching(self, regex: str) -> List[str]:
        """Job names fully matching `regex`, in registration order (list views)."""
        pattern = re.compile(regex)
        return [name for name in self._jobs if pattern.fullmatch(name)]

    def names(self) -> List[str]:
        return list(self._jobs)

    def __contains__(self, name: object) -> bool:
        return name in self._jobs

    def __iter__(self) -> Iterator[Job]:
        return iter(list(self._jobs.values()))

    def __len__(self) -> int:
        return len(self._jobs)
