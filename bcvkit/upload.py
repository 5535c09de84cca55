"""Upload bootc disk images to libvirt storage pools with metadata annotations."""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone

from bcvkit.domain import BOOTC_NAMESPACE

logger = logging.getLogger(__name__)

BCVK_VERSION = "1.0.0"
MIN_DISK_SIZE = 4 * 1024 * 1024 * 1024
DIGEST_PREFIX = "sha256:"
DIGEST_SHORT_LEN = 12
DEFAULT_FILESYSTEM = "default"


class UploadError(Exception):
    """Raised when a volume cannot be created or uploaded."""


def sanitized_volume_name(image: str) -> str:
    """Derive a volume name from the last path component of a container image."""
    last = image.split("/")[-1]
    name = last.replace(":", "-").replace("/", "-").replace(".", "-")
    return f"bootc-{name}"


def default_disk_size(image_size: int) -> int:
    """Twice the image size, but never less than 4 GiB."""
    return max(image_size * 2, MIN_DISK_SIZE)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _container_lines(
    source_image: str, filesystem: str | None, created: str
) -> list[str]:
    fs = filesystem if filesystem is not None else DEFAULT_FILESYSTEM
    return [
        f'<bootc:container xmlns:bootc="{BOOTC_NAMESPACE}">',
        f"  <bootc:source-image>{source_image}</bootc:source-image>",
        f"  <bootc:filesystem>{fs}</bootc:filesystem>",
        f"  <bootc:created>{created}</bootc:created>",
        f"  <bootc:bcvk-version>{BCVK_VERSION}</bootc:bcvk-version>",
        "</bootc:container>",
    ]


def metadata_xml(
    source_image: str, filesystem: str | None = None, created: str | None = None
) -> str:
    """A standalone ``<metadata>`` document describing the source image."""
    created = created if created is not None else _now()
    inner = _container_lines(source_image, filesystem, created)
    lines = ["<metadata>", *(f"  {line}" for line in inner), "</metadata>"]
    return "\n".join(lines)


def insert_volume_metadata(
    volume_xml: str,
    source_image: str,
    filesystem: str | None = None,
    created: str | None = None,
) -> str:
    """Insert a bootc ``<metadata>`` block before the closing ``</volume>`` tag."""
    created = created if created is not None else _now()
    inner = _container_lines(source_image, filesystem, created)
    lines = [
        "  <metadata>",
        *(f"    {line}" for line in inner),
        "  </metadata>",
        "</volume>",
    ]
    return volume_xml.replace("</volume>", "\n".join(lines))


@dataclass
class UploadOptions:
    """Options for installing a bootc image to disk and uploading it to libvirt."""

    source_image: str
    volume_name: str | None = None
    pool: str = "default"
    disk_size: str | None = None
    filesystem: str | None = None
    root_size: str | None = None
    storage_path: str | None = None
    memory: str | None = None
    vcpus: int | None = None
    karg: list[str] = field(default_factory=list)
    connect: str | None = None

    def virsh_command(self, *args: str) -> list[str]:
        """The virsh argument vector, with the connection URI if one is set."""
        command = ["virsh"]
        if self.connect is not None:
            command += ["-c", self.connect]
        command.extend(args)
        return command

    def _virsh(self, *args: str) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                self.virsh_command(*args), capture_output=True, check=False
            )
        except OSError as exc:
            raise UploadError(f"failed to run virsh: {exc}") from exc

    def get_volume_name(self) -> str:
        """The explicit volume name, or one derived from the source image."""
        if self.volume_name is not None:
            return self.volume_name
        return sanitized_volume_name(self.source_image)

    def get_cached_volume_name(self, image_digest: str) -> str:
        """A volume name carrying the first characters of the image digest."""
        if self.volume_name is not None:
            return self.volume_name
        digest = image_digest.removeprefix(DIGEST_PREFIX)
        return f"{self.get_volume_name()}-{digest[:DIGEST_SHORT_LEN]}"

    def check_pool_exists(self) -> None:
        """Raise UploadError unless the storage pool exists."""
        proc = self._virsh("pool-info", self.pool)
        if proc.returncode != 0:
            raise UploadError(
                f"Storage pool '{self.pool}' does not exist. Create it with: "
                f"virsh pool-define-as {self.pool} dir - - - - /var/lib/libvirt/images"
            )

    def upload_to_libvirt(
        self, disk_path, disk_size_bytes: int, image_digest: str
    ) -> None:
        """Create a raw volume in the pool and upload the disk image into it."""
        logger.debug("Uploading disk to libvirt pool '%s'", self.pool)
        self.check_pool_exists()

        volume_path = f"{self.get_cached_volume_name(image_digest)}.raw"

        try:
            self._virsh("vol-delete", volume_path, "--pool", self.pool)
        except UploadError:
            pass

        proc = self._virsh(
            "vol-create-as",
            self.pool,
            volume_path,
            str(disk_size_bytes),
            "--format",
            "raw",
        )
        if proc.returncode != 0:
            stderr = proc.stderr.decode("utf-8", errors="replace")
            raise UploadError(f"Failed to create volume: {stderr}")

        logger.debug("Uploading disk image to volume '%s'", volume_path)
        proc = self._virsh(
            "vol-upload", volume_path, os.fspath(disk_path), "--pool", self.pool
        )
        if proc.returncode != 0:
            stderr = proc.stderr.decode("utf-8", errors="replace")
            raise UploadError(f"Failed to upload volume: {stderr}")