# artifacts.py
# Artifact store collaborators: where promoted build outputs end up.
from __future__ import annotations

import shutil
import urllib.error
import urllib.request
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import quote

from .config import Settings
from .model import ArtifactReference
from .ui.console import get_console


class ArtifactStore(Protocol):
    def publish(self, artifact: ArtifactReference, repository: str) -> bool:
        """Publish one artifact into `repository`; True on success."""
        ...


class LocalArtifactStore:
    """
    Directory-backed repository store:
      root/
        <repository>/
          <artifact file name>
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()

    def path_for(self, artifact: ArtifactReference, repository: str) -> Path:
        return self.root / repository / artifact.filename

    def publish(self, artifact: ArtifactReference, repository: str) -> bool:
        dest = self.path_for(artifact, repository)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(artifact.location, dest)
        except OSError as e:
            get_console().print_info(f"PUBLISH: copy of {artifact.id} failed: {e}")
            return False
        return True


class HttpArtifactStore:
    """Deploys artifacts with an HTTP PUT to <base_url>/<repository>/<file name>."""

    def __init__(self, base_url: str, *, timeout: float = 60.0, headers: Optional[dict] = None):
        # Ensure base_url doesn't end with /
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = dict(headers or {})

    def url_for(self, artifact: ArtifactReference, repository: str) -> str:
        return f"{self.base_url}/{quote(repository)}/{quote(artifact.filename)}"

    def publish(self, artifact: ArtifactReference, repository: str) -> bool:
        console = get_console()
        url = self.url_for(artifact, repository)
        try:
            data = Path(artifact.location).read_bytes()
        except OSError as e:
            console.print_info(f"PUBLISH: cannot read {artifact.location}: {e}")
            return False

        req_headers = {"Content-Type": "application/octet-stream"}
        req_headers.update(self.headers)
        try:
            req = urllib.request.Request(url, data=data, headers=req_headers, method="PUT")
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                ok = 200 <= response.status < 300
        except ValueError as e:
            # malformed base_url, e.g. a non-numeric port
            console.print_info(f"PUBLISH: invalid URL {url}: {e}")
            return False
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8", errors="replace") if e.fp else ""
            console.print_info(f"PUBLISH: {url} -> HTTP {e.code} {e.reason}. {error_body}".rstrip())
            return False
        except urllib.error.URLError as e:
            console.print_info(f"PUBLISH: network error for {url}: {e.reason}")
            return False
        console.print_debug(f"PUT {url} -> {'ok' if ok else 'failed'}")
        return ok


def store_from_settings(settings: Settings) -> ArtifactStore:
    if settings.artifact_url:
        return HttpArtifactStore(settings.artifact_url)
    return LocalArtifactStore(settings.artifact_store_dir)
