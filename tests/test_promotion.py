import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pytest

from buildflow.artifacts import HttpArtifactStore, LocalArtifactStore, store_from_settings
from buildflow.config import Settings
from buildflow.errors import PromotionFailure, UnresolvedArtifactError
from buildflow.model import ArtifactReference, JobStatus, RunResult
from buildflow.promotion import PromotionGate


def record(history, job, n, *files, status=JobStatus.SUCCESS):
    refs = tuple(ArtifactReference(id=f"{job}#{n}/{f.name}", location=f) for f in files)
    history.record(RunResult(job=job, build_number=n, status=status, artifacts=refs))


class RejectingStore:
    def publish(self, artifact, repository):
        return False


class BrokenStore:
    def publish(self, artifact, repository):
        raise PermissionError("read-only repository")


class TestPromote:
    def test_copies_artifacts_into_repository(self, history, store, war):
        record(history, "build", 3, war)
        outcome = PromotionGate(history, store).promote("build", 3)

        assert outcome.ok
        assert outcome.repository == "libs-snapshot-local"
        assert outcome.published == ["app.war"]
        assert (store.root / "libs-snapshot-local" / "app.war").exists()
        assert "published 1 artifact(s)" in outcome.summary()

    def test_explicit_repository_and_pattern(self, history, store, war, tmp_path):
        notes = tmp_path / "out" / "notes.txt"
        notes.write_text("release notes")
        record(history, "build", 1, war, notes)

        outcome = PromotionGate(history, store).promote("build", 1, repository="releases", pattern="*.war")

        assert outcome.published == ["app.war"]
        assert not (store.root / "releases" / "notes.txt").exists()

    def test_promotes_the_requested_build_not_the_latest(self, history, store, tmp_path):
        old = tmp_path / "v1" / "app.war"
        new = tmp_path / "v2" / "app.war"
        for f, body in ((old, b"one"), (new, b"two")):
            f.parent.mkdir()
            f.write_bytes(body)
        record(history, "build", 1, old)
        record(history, "build", 2, new)

        PromotionGate(history, store).promote("build", 1)

        assert (store.root / "libs-snapshot-local" / "app.war").read_bytes() == b"one"

    def test_unknown_build_is_unresolved(self, history, store):
        with pytest.raises(UnresolvedArtifactError) as exc:
            PromotionGate(history, store).promote("build", 99)
        assert exc.value.build_number == 99
        assert "build #99" in str(exc.value)

    def test_pattern_matching_nothing_is_unresolved(self, history, store, war):
        record(history, "build", 1, war)
        with pytest.raises(UnresolvedArtifactError):
            PromotionGate(history, store).promote("build", 1, pattern="*.jar")

    def test_rejected_publish_is_a_promotion_failure(self, history, war):
        record(history, "build", 1, war)
        with pytest.raises(PromotionFailure) as exc:
            PromotionGate(history, RejectingStore()).promote("build", 1)
        assert exc.value.repository == "libs-snapshot-local"
        assert "app.war" in exc.value.message

    def test_store_errors_become_promotion_failures(self, history, war):
        record(history, "build", 1, war)
        with pytest.raises(PromotionFailure) as exc:
            PromotionGate(history, BrokenStore()).promote("build", 1, repository="releases")
        assert "read-only repository" in str(exc.value)

    def test_missing_source_file_fails_local_publish(self, history, store, tmp_path):
        record(history, "build", 1, tmp_path / "gone.war")
        with pytest.raises(PromotionFailure):
            PromotionGate(history, store).promote("build", 1)


class TestPromoteLatest:
    def test_skips_failed_builds(self, history, store, tmp_path):
        good = tmp_path / "good.war"
        bad = tmp_path / "bad.war"
        good.write_bytes(b"good")
        bad.write_bytes(b"bad")
        record(history, "build", 1, good)
        record(history, "build", 2, bad, status=JobStatus.FAILURE)

        outcome = PromotionGate(history, store).promote_latest("build")

        assert outcome.build_number == 1
        assert outcome.published == ["good.war"]

    def test_no_successful_build(self, history, store):
        with pytest.raises(UnresolvedArtifactError) as exc:
            PromotionGate(history, store).promote_latest("build")
        assert "latest successful build" in str(exc.value)


class TestStores:
    def test_http_store_url(self):
        store = HttpArtifactStore("https://repo.example.com/artifactory/")
        ref = ArtifactReference(id="build#1/RoadShow 1.war", location=Path("RoadShow 1.war"))
        assert store.url_for(ref, "libs-snapshot-local") == (
            "https://repo.example.com/artifactory/libs-snapshot-local/RoadShow%201.war"
        )

    def test_store_from_settings(self, tmp_path):
        local = store_from_settings(Settings(home=tmp_path))
        assert isinstance(local, LocalArtifactStore)
        assert local.root == (tmp_path / "artifacts").resolve()
        remote = store_from_settings(Settings(artifact_url="https://repo.example.com"))
        assert isinstance(remote, HttpArtifactStore)


class RepositoryHandler(BaseHTTPRequestHandler):
    """Accepts PUTs except under a read-only repository."""

    def do_PUT(self):
        body = self.rfile.read(int(self.headers["Content-Length"]))
        if "/read-only/" in self.path:
            self.send_response(403, "Forbidden")
            self.end_headers()
            self.wfile.write(b"repository is read-only")
            return
        self.server.received[self.path] = (body, self.headers)
        self.send_response(201)
        self.end_headers()

    def log_message(self, *args):
        pass


@pytest.fixture
def repository_server():
    server = ThreadingHTTPServer(("127.0.0.1", 0), RepositoryHandler)
    server.received = {}
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


class TestHttpArtifactStore:
    def _store(self, server, **kwargs):
        return HttpArtifactStore(f"http://127.0.0.1:{server.server_address[1]}/artifactory", **kwargs)

    def test_put_uploads_the_file(self, repository_server, war):
        store = self._store(repository_server, headers={"X-JFrog-Art-Api": "secret"})
        ref = ArtifactReference(id="build#1/app.war", location=war)

        assert store.publish(ref, "libs-snapshot-local")

        body, headers = repository_server.received["/artifactory/libs-snapshot-local/app.war"]
        assert body == war.read_bytes()
        assert headers["X-JFrog-Art-Api"] == "secret"
        assert headers["Content-Type"] == "application/octet-stream"

    def test_http_error_is_a_rejection(self, repository_server, war):
        store = self._store(repository_server)
        assert not store.publish(ArtifactReference(id="build#1/app.war", location=war), "read-only")
        assert repository_server.received == {}

    def test_gate_reports_rejection(self, repository_server, history, war):
        record(history, "build", 1, war)
        gate = PromotionGate(history, self._store(repository_server))

        with pytest.raises(PromotionFailure) as exc:
            gate.promote("build", 1, repository="read-only")
        assert "store rejected app.war" in str(exc.value)

    def test_unreachable_server(self, war):
        with socket.socket() as s:
            s.bind(("127.0.0.1", 0))
            port = s.getsockname()[1]
        store = HttpArtifactStore(f"http://127.0.0.1:{port}", timeout=2)
        assert not store.publish(ArtifactReference(id="build#1/app.war", location=war), "libs-snapshot-local")

    def test_malformed_url(self, war):
        store = HttpArtifactStore("http://artifactory:80a/artifactory")
        assert not store.publish(ArtifactReference(id="build#1/app.war", location=war), "libs-snapshot-local")

    def test_unexpected_store_errors_become_promotion_failures(self, history, war):
        class CrashingStore:
            def publish(self, artifact, repository):
                raise RuntimeError("unexpected response")

        record(history, "build", 1, war)
        with pytest.raises(PromotionFailure) as exc:
            PromotionGate(history, CrashingStore()).promote("build", 1)
        assert "unexpected response" in exc.value.message
