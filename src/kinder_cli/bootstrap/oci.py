"""Minimal OCI artifact builder and registry pusher.

Artifacts are a single gzip tar layer plus an image config carrying
labels, pushed over the OCI distribution API.
"""

from __future__ import annotations

import gzip
import hashlib
import io
import json
import tarfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from urllib.parse import urljoin

import httpx

from ..errors import TransientInfrastructureError, ValidationError
from ..shared.logging import get_logger

logger = get_logger(__name__)

MEDIA_TYPE_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
MEDIA_TYPE_CONFIG = "application/vnd.oci.image.config.v1+json"
MEDIA_TYPE_LAYER = "application/vnd.oci.image.layer.v1.tar+gzip"
DOCKER_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"

SOURCE_URL = "https://codeberg.org/hipkoi/kinder"


def sha256_digest(data: bytes) -> str:
    return "sha256:" + hashlib.sha256(data).hexdigest()


@dataclass
class Blob:
    media_type: str
    data: bytes

    @property
    def digest(self) -> str:
        return sha256_digest(self.data)

    def descriptor(self) -> dict:
        return {"mediaType": self.media_type, "digest": self.digest, "size": len(self.data)}


@dataclass
class OCIArtifact:
    """A built single-layer image ready to push."""

    config: Blob
    layer: Blob
    manifest: bytes
    labels: dict[str, str] = field(default_factory=dict)

    @property
    def digest(self) -> str:
        return sha256_digest(self.manifest)


def _tar_layer(files: dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w", format=tarfile.PAX_FORMAT) as tar:
        for name in sorted(files):
            content = files[name]
            info = tarfile.TarInfo(name=name)
            info.size = len(content)
            info.mode = 0o644
            info.mtime = 0
            tar.addfile(info, io.BytesIO(content))
    return buf.getvalue()


def build_artifact(
    files: dict[str, bytes],
    labels: dict[str, str],
    author: str = "kinder",
    created: datetime | None = None,
) -> OCIArtifact:
    """Package files into a single-layer OCI image.

    Args:
        files: Path inside the layer -> content
        labels: Image config labels
        author: Image config author
        created: Creation time; defaults to now

    Returns:
        OCIArtifact
    """
    if not files:
        raise ValidationError(message="An artifact needs at least one file")
    tar_bytes = _tar_layer(files)
    layer = Blob(MEDIA_TYPE_LAYER, gzip.compress(tar_bytes, mtime=0))
    created = created or datetime.now(timezone.utc)

    config_doc = {
        "created": created.strftime("%Y-%m-%dT%H:%M:%SZ"),
        "author": author,
        "architecture": "amd64",
        "os": "linux",
        "config": {"Labels": dict(labels)},
        "rootfs": {"type": "layers", "diff_ids": [sha256_digest(tar_bytes)]},
    }
    config = Blob(MEDIA_TYPE_CONFIG, json.dumps(config_doc, sort_keys=True).encode())

    manifest = {
        "schemaVersion": 2,
        "mediaType": MEDIA_TYPE_MANIFEST,
        "config": config.descriptor(),
        "layers": [layer.descriptor()],
    }
    return OCIArtifact(
        config=config,
        layer=layer,
        manifest=json.dumps(manifest, sort_keys=True).encode(),
        labels=dict(labels),
    )


@dataclass(frozen=True)
class ImageReference:
    registry: str
    repository: str
    tag: str

    @classmethod
    def parse(cls, reference: str) -> ImageReference:
        """Parse "<registry>/<repository>:<tag>"; the tag defaults to latest."""
        registry, sep, rest = reference.partition("/")
        if not sep or not rest:
            raise ValidationError(message=f"Invalid image reference {reference!r}")
        repository, tag = rest, "latest"
        last = rest.rsplit("/", 1)[-1]
        if ":" in last:
            repository, _, tag = rest.rpartition(":")
        return cls(registry, repository, tag)

    def __str__(self) -> str:
        return f"{self.registry}/{self.repository}:{self.tag}"


@dataclass
class PushResult:
    reference: str
    digest: str


class RegistryPusher:
    """Push artifacts to a registry without authentication."""

    def __init__(
        self,
        insecure: bool = True,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize pusher.

        Args:
            insecure: Talk plain HTTP to the registry.
            timeout: Timeout for each HTTP request.
            transport: Optional httpx transport (used by tests).
        """
        self.insecure = insecure
        self.timeout = timeout
        self.transport = transport

    def _client(self, ref: ImageReference) -> httpx.Client:
        scheme = "http" if self.insecure else "https"
        return httpx.Client(
            base_url=f"{scheme}://{ref.registry}",
            timeout=self.timeout,
            transport=self.transport,
        )

    @staticmethod
    def _check(response: httpx.Response, action: str, expected: tuple[int, ...]) -> None:
        if response.status_code not in expected:
            raise TransientInfrastructureError(
                message=f"{action} failed: HTTP {response.status_code} {response.text[:200]}",
                details={"status_code": response.status_code},
            )

    def _push_blob(self, client: httpx.Client, ref: ImageReference, blob: Blob) -> None:
        head = client.head(f"/v2/{ref.repository}/blobs/{blob.digest}")
        if head.status_code == 200:
            logger.debug("blob already present", digest=blob.digest)
            return
        start = client.post(f"/v2/{ref.repository}/blobs/uploads/")
        self._check(start, "Blob upload start", (202,))
        location = start.headers.get("Location")
        if not location:
            raise TransientInfrastructureError(message="Registry returned no upload location")
        location = urljoin(str(client.base_url), location)
        separator = "&" if "?" in location else "?"
        upload = client.put(
            f"{location}{separator}digest={blob.digest}",
            content=blob.data,
            headers={"Content-Type": "application/octet-stream"},
        )
        self._check(upload, "Blob upload", (201, 204))

    def push(self, artifact: OCIArtifact, reference: str) -> PushResult:
        """Push blobs then the manifest.

        Raises:
            TransientInfrastructureError: On any non-success response or transport error.
        """
        ref = ImageReference.parse(reference)
        try:
            with self._client(ref) as client:
                self._push_blob(client, ref, artifact.layer)
                self._push_blob(client, ref, artifact.config)
                response = client.put(
                    f"/v2/{ref.repository}/manifests/{ref.tag}",
                    content=artifact.manifest,
                    headers={"Content-Type": MEDIA_TYPE_MANIFEST},
                )
                self._check(response, "Manifest upload", (201, 200))
        except httpx.HTTPError as e:
            raise TransientInfrastructureError(message=f"Push to {ref} failed: {e}") from e

        digest = response.headers.get("Docker-Content-Digest", artifact.digest)
        logger.info("artifact pushed", reference=str(ref), digest=digest)
        return PushResult(reference=str(ref), digest=digest)

    def head_digest(self, reference: str) -> str:
        """Current manifest digest for a reference."""
        ref = ImageReference.parse(reference)
        try:
            with self._client(ref) as client:
                response = client.head(
                    f"/v2/{ref.repository}/manifests/{ref.tag}",
                    headers={"Accept": f"{MEDIA_TYPE_MANIFEST}, {DOCKER_MANIFEST_V2}"},
                )
        except httpx.HTTPError as e:
            raise TransientInfrastructureError(message=f"Digest lookup for {ref} failed: {e}") from e
        self._check(response, f"Digest lookup for {ref}", (200,))
        digest = response.headers.get("Docker-Content-Digest")
        if not digest:
            raise TransientInfrastructureError(message=f"Registry returned no digest for {ref}")
        return digest
