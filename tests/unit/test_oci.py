"""Unit tests for the OCI artifact builder and registry pusher."""

from __future__ import annotations

import gzip
import io
import json
import tarfile
from datetime import datetime, timezone

import httpx
import pytest

from kinder_cli.bootstrap import ImageReference, RegistryPusher, build_artifact
from kinder_cli.bootstrap.oci import MEDIA_TYPE_LAYER, MEDIA_TYPE_MANIFEST, sha256_digest
from kinder_cli.errors import TransientInfrastructureError, ValidationError

CREATED = datetime(2026, 1, 1, tzinfo=timezone.utc)


class FakeRegistry:
    """In-memory OCI distribution endpoint for httpx.MockTransport."""

    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}
        self.manifests: dict[str, bytes] = {}
        self.requests: list[tuple[str, str]] = []
        self.fail_manifest = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append((request.method, path))
        if request.method == "HEAD" and "/blobs/" in path:
            digest = path.rsplit("/", 1)[-1]
            return httpx.Response(200 if digest in self.blobs else 404)
        if request.method == "POST" and path.endswith("/blobs/uploads/"):
            return httpx.Response(202, headers={"Location": path + "upload-1?state=abc"})
        if request.method == "PUT" and "/blobs/uploads/" in path:
            digest = request.url.params["digest"]
            self.blobs[digest] = request.content
            return httpx.Response(201)
        if request.method == "PUT" and "/manifests/" in path:
            if self.fail_manifest:
                return httpx.Response(400, text="MANIFEST_INVALID")
            self.manifests[path] = request.content
            return httpx.Response(201, headers={"Docker-Content-Digest": sha256_digest(request.content)})
        if request.method == "HEAD" and "/manifests/" in path:
            content = self.manifests.get(path)
            if content is None:
                return httpx.Response(404)
            return httpx.Response(200, headers={"Docker-Content-Digest": sha256_digest(content)})
        return httpx.Response(404)


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def pusher(registry) -> RegistryPusher:
    return RegistryPusher(transport=httpx.MockTransport(registry.handler))


@pytest.mark.cli_unit
class TestBuildArtifact:
    """Tests for build_artifact."""

    def test_layer_contains_files(self):
        """Test the gzip tar layer holds the files."""
        artifact = build_artifact({"trust-bundle.pem": b"PEM"}, {"a": "b"}, created=CREATED)
        with tarfile.open(fileobj=io.BytesIO(gzip.decompress(artifact.layer.data))) as tar:
            assert tar.getnames() == ["trust-bundle.pem"]
            assert tar.extractfile("trust-bundle.pem").read() == b"PEM"

    def test_manifest_references_blobs(self):
        """Test the manifest points at the config and layer by digest."""
        artifact = build_artifact({"x.yaml": b"a: 1\n"}, {"title": "t"}, created=CREATED)
        manifest = json.loads(artifact.manifest)
        assert manifest["mediaType"] == MEDIA_TYPE_MANIFEST
        assert manifest["config"]["digest"] == artifact.config.digest
        assert manifest["layers"] == [
            {"mediaType": MEDIA_TYPE_LAYER, "digest": artifact.layer.digest, "size": len(artifact.layer.data)}
        ]
        config = json.loads(artifact.config.data)
        assert config["config"]["Labels"] == {"title": "t"}
        assert config["created"] == "2026-01-01T00:00:00Z"

    def test_reproducible(self):
        """Test identical input gives an identical digest."""
        a = build_artifact({"x": b"1"}, {}, created=CREATED)
        b = build_artifact({"x": b"1"}, {}, created=CREATED)
        assert a.digest == b.digest

    def test_empty(self):
        """Test an artifact without files is rejected."""
        with pytest.raises(ValidationError):
            build_artifact({}, {})


@pytest.mark.cli_unit
class TestImageReference:
    """Tests for ImageReference.parse."""

    @pytest.mark.parametrize(
        "reference,expected",
        [
            ("localhost:5000/trust-bundle:latest", ("localhost:5000", "trust-bundle", "latest")),
            ("localhost:5000/trust-bundle", ("localhost:5000", "trust-bundle", "latest")),
            ("zot:5000/team/app:v1", ("zot:5000", "team/app", "v1")),
        ],
    )
    def test_parse(self, reference, expected):
        """Test registry, repository and tag are split."""
        ref = ImageReference.parse(reference)
        assert (ref.registry, ref.repository, ref.tag) == expected

    def test_invalid(self):
        """Test a reference without a repository is rejected."""
        with pytest.raises(ValidationError):
            ImageReference.parse("trust-bundle")


@pytest.mark.cli_unit
class TestRegistryPusher:
    """Tests for pushing through a mock transport."""

    def test_push(self, registry, pusher):
        """Test blobs then manifest are uploaded."""
        artifact = build_artifact({"trust-bundle.pem": b"PEM"}, {}, created=CREATED)
        result = pusher.push(artifact, "localhost:5000/trust-bundle:latest")

        assert result.reference == "localhost:5000/trust-bundle:latest"
        assert result.digest == artifact.digest
        assert registry.blobs[artifact.layer.digest] == artifact.layer.data
        assert registry.blobs[artifact.config.digest] == artifact.config.data
        assert registry.requests[-1] == ("PUT", "/v2/trust-bundle/manifests/latest")

    def test_existing_blob_skipped(self, registry, pusher):
        """Test a blob already in the registry is not uploaded again."""
        artifact = build_artifact({"x": b"1"}, {}, created=CREATED)
        registry.blobs[artifact.layer.digest] = artifact.layer.data
        pusher.push(artifact, "localhost:5000/x:latest")
        posts = [r for r in registry.requests if r[0] == "POST"]
        assert len(posts) == 1

    def test_manifest_rejected(self, registry, pusher):
        """Test a rejected manifest raises TransientInfrastructureError."""
        registry.fail_manifest = True
        artifact = build_artifact({"x": b"1"}, {}, created=CREATED)
        with pytest.raises(TransientInfrastructureError, match="HTTP 400"):
            pusher.push(artifact, "localhost:5000/x:latest")

    def test_unreachable(self):
        """Test transport errors are wrapped."""

        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        pusher = RegistryPusher(transport=httpx.MockTransport(refuse))
        with pytest.raises(TransientInfrastructureError, match="refused"):
            pusher.push(build_artifact({"x": b"1"}, {}), "localhost:5000/x:latest")

    def test_head_digest(self, registry, pusher):
        """Test the digest of a pushed manifest is read back."""
        artifact = build_artifact({"x": b"1"}, {}, created=CREATED)
        pusher.push(artifact, "localhost:5000/x:latest")
        assert pusher.head_digest("localhost:5000/x:latest") == artifact.digest

    def test_head_digest_missing(self, pusher):
        """Test a missing manifest raises."""
        with pytest.raises(TransientInfrastructureError, match="HTTP 404"):
            pusher.head_digest("localhost:5000/missing:latest")
