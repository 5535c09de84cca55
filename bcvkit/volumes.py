"""Discover and list bootc volumes in libvirt storage pools."""

from __future__ import annotations

import json
import logging
import math
import subprocess
from dataclasses import dataclass
from typing import Any

from tabulate import tabulate

logger = logging.getLogger(__name__)

VOLUME_DESCRIPTION_PREFIX = "bcvk volume: "
NO_METADATA = "<no metadata>"

_UNIT_MULTIPLIERS = {
    "B": 1,
    "bytes": 1,
    "KiB": 1024,
    "KB": 1024,
    "MiB": 1024**2,
    "MB": 1024**2,
    "GiB": 1024**3,
    "GB": 1024**3,
    "TiB": 1024**4,
    "TB": 1024**4,
}

_SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")
_SIZE_THRESHOLD = 1024


class VirshError(Exception):
    """Raised when virsh cannot be run or reports a failure."""


@dataclass
class BootcVolume:
    """A volume in a libvirt storage pool, with any bootc metadata it carries."""

    name: str
    size: int
    format: str
    path: str
    source_image: str | None = None
    source_digest: str | None = None
    created: str | None = None

    def is_bootc_volume(self) -> bool:
        """True if the volume has bootc metadata or a ``bootc-`` name."""
        return self.source_image is not None or self.name.startswith("bootc-")

    def to_json(self) -> dict[str, Any]:
        """A JSON-serialisable mapping of the volume's fields."""
        return {
            "name": self.name,
            "size": self.size,
            "format": self.format,
            "path": self.path,
            "source_image": self.source_image,
            "source_digest": self.source_digest,
            "created": self.created,
        }


def extract_xml_value(xml: str, element: str) -> str | None:
    """Return the trimmed text between the first ``<element>`` and its closing tag."""
    start_tag = f"<{element}>"
    end_tag = f"</{element}>"
    start_pos = xml.find(start_tag)
    if start_pos < 0:
        return None
    start = start_pos + len(start_tag)
    end = xml.find(end_tag, start)
    if end < 0:
        return None
    return xml[start:end].strip()


def parse_virsh_size(size_str: str) -> int | None:
    """Parse a virsh size such as ``"5.00 GiB"`` into bytes, or None if unparseable."""
    parts = size_str.split()
    if len(parts) != 2:
        return None
    number_text, unit = parts
    try:
        number = float(number_text)
    except ValueError:
        return None
    multiplier = _UNIT_MULTIPLIERS.get(unit)
    if multiplier is None or not math.isfinite(number):
        return None
    return max(0, int(number * multiplier))


def format_size(size: int) -> str:
    """Format a byte count in binary units with one decimal place."""
    if size < _SIZE_THRESHOLD:
        return f"{size}B"
    value = float(size)
    index = 0
    while value >= _SIZE_THRESHOLD and index < len(_SIZE_UNITS) - 1:
        value /= _SIZE_THRESHOLD
        index += 1
    return f"{value:.1f}{_SIZE_UNITS[index]}"


def parse_volume_list(output: str) -> list[str]:
    """Extract volume names from ``virsh vol-list`` table output."""
    names = []
    for line in output.splitlines()[2:]:
        fields = line.split()
        name = fields[0] if fields else ""
        if name and not name.startswith("-"):
            names.append(name)
    return names


def parse_volume_info(output: str) -> tuple[int, str]:
    """Extract ``(capacity_bytes, type)`` from ``virsh vol-info`` output."""
    size = 0
    fmt = "unknown"
    for line in output.splitlines():
        if line.startswith("Capacity:"):
            parsed = parse_virsh_size(line[len("Capacity:"):].strip())
            size = parsed if parsed is not None else 0
        elif line.startswith("Type:"):
            fields = line.split()
            if len(fields) > 1:
                fmt = fields[1]
    return size, fmt


def _string_field(metadata: Any, key: str) -> str | None:
    if not isinstance(metadata, dict):
        return None
    value = metadata.get(key)
    return value if isinstance(value, str) else None


def parse_volume_metadata(xml: str) -> tuple[str | None, str | None, str | None]:
    """Return ``(source_image, source_digest, created)`` from a volume's XML.

    The JSON carried in the ``<description>`` element is preferred; the older
    ``bootc:`` namespaced elements are used when it yields no source image.
    """
    source_image = source_digest = created = None
    description = extract_xml_value(xml, "description")
    if description is not None and description.startswith(VOLUME_DESCRIPTION_PREFIX):
        try:
            metadata = json.loads(description[len(VOLUME_DESCRIPTION_PREFIX):])
        except json.JSONDecodeError:
            metadata = None
        if metadata is not None:
            source_image = _string_field(metadata, "source_image")
            source_digest = _string_field(metadata, "source_digest")
            created = _string_field(metadata, "created")

    if source_image is None:
        source_image = extract_xml_value(xml, "bootc:source-image")
        source_digest = extract_xml_value(xml, "bootc:source-digest")
        created = extract_xml_value(xml, "bootc:created")
    return source_image, source_digest, created


def _decode(data: bytes, what: str) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise VirshError(f"invalid UTF-8 in {what}: {exc}") from exc


@dataclass
class ListVolumesOptions:
    """Options controlling which volumes are listed and how."""

    pool: str = "default"
    json: bool = False
    detailed: bool = False
    source_image: str | None = None
    all: bool = False
    connect: str | None = None

    def virsh_command(self, *args: str) -> list[str]:
        """The virsh argument vector, with the connection URI if one is set."""
        command = ["virsh"]
        if self.connect is not None:
            command += ["-c", self.connect]
        command.extend(args)
        return command

    def _virsh(self, *args: str) -> subprocess.CompletedProcess:
        command = self.virsh_command(*args)
        try:
            return subprocess.run(command, capture_output=True, check=False)
        except OSError as exc:
            raise VirshError(f"failed to run virsh: {exc}") from exc

    def check_pool_exists(self) -> None:
        """Raise VirshError unless the storage pool is accessible."""
        proc = self._virsh("pool-info", self.pool)
        if proc.returncode != 0:
            stderr = proc.stderr.decode("utf-8", errors="replace")
            raise VirshError(f"Cannot access storage pool '{self.pool}': {stderr}")

    def list_pool_volumes(self) -> list[str]:
        """Names of all volumes in the storage pool."""
        proc = self._virsh("vol-list", self.pool)
        if proc.returncode != 0:
            stderr = proc.stderr.decode("utf-8", errors="replace")
            raise VirshError(
                f"Failed to list volumes in pool '{self.pool}': {stderr}"
            )
        return parse_volume_list(_decode(proc.stdout, "virsh vol-list output"))

    def get_volume_info(self, volume_name: str) -> BootcVolume:
        """Collect path, size, format and bootc metadata for one volume."""
        path_proc = self._virsh("vol-path", volume_name, "--pool", self.pool)
        if path_proc.returncode == 0:
            path = _decode(path_proc.stdout, "virsh vol-path output").strip()
        else:
            path = "(unknown path)"

        size, fmt = 0, "unknown"
        info_proc = self._virsh("vol-info", volume_name, "--pool", self.pool)
        if info_proc.returncode == 0:
            size, fmt = parse_volume_info(
                _decode(info_proc.stdout, "virsh vol-info output")
            )

        source_image = source_digest = created = None
        xml_proc = self._virsh("vol-dumpxml", volume_name, "--pool", self.pool)
        if xml_proc.returncode == 0:
            xml = _decode(xml_proc.stdout, "virsh vol-dumpxml output")
            logger.debug("Volume XML for %s: %s", volume_name, xml)
            source_image, source_digest, created = parse_volume_metadata(xml)

        return BootcVolume(
            name=volume_name,
            size=size,
            format=fmt,
            path=path,
            source_image=source_image,
            source_digest=source_digest,
            created=created,
        )

    def filter_volumes(self, volumes) -> list[BootcVolume]:
        """Keep bootc volumes (unless ``all``) matching the source image filter."""
        return [vol for vol in volumes if self._accepts(vol)]

    def _accepts(self, volume: BootcVolume) -> bool:
        if not self.all and not volume.is_bootc_volume():
            return False
        if self.source_image is not None:
            return (
                volume.source_image is not None
                and self.source_image in volume.source_image
            )
        return True

    def render_human(self, volumes) -> str:
        """A table of the volumes followed by a summary line."""
        volumes = list(volumes)
        if not volumes:
            if self.all:
                return f"No volumes found in pool '{self.pool}'"
            return (
                f"No bootc volumes found in pool '{self.pool}'\n"
                "Use --all to see all volumes"
            )

        if self.detailed:
            headers = ["NAME", "SIZE", "FORMAT", "PATH", "SOURCE IMAGE", "CREATED"]
            rows = [
                [
                    vol.name,
                    format_size(vol.size),
                    vol.format,
                    vol.path,
                    vol.source_image or NO_METADATA,
                    vol.created or "N/A",
                ]
                for vol in volumes
            ]
        else:
            headers = ["NAME", "SIZE", "SOURCE IMAGE"]
            rows = [
                [vol.name, format_size(vol.size), vol.source_image or NO_METADATA]
                for vol in volumes
            ]

        table = tabulate(rows, headers=headers, tablefmt="fancy_grid", disable_numparse=True)
        plural = "" if len(volumes) == 1 else "s"
        return f"{table}\n\nFound {len(volumes)} volume{plural} in pool '{self.pool}'"

    def render_json(self, volumes) -> str:
        """Pretty-printed JSON describing the pool and its volumes."""
        volumes = list(volumes)
        output = {
            "pool": self.pool,
            "volume_count": len(volumes),
            "volumes": [vol.to_json() for vol in volumes],
        }
        return json.dumps(output, indent=2, sort_keys=True)


def run(opts: ListVolumesOptions) -> None:
    """List volumes in the configured pool and print them."""
    logger.debug("Listing volumes in libvirt pool: %s", opts.pool)
    opts.check_pool_exists()

    names = opts.list_pool_volumes()
    if not names:
        if opts.json:
            print(opts.render_json([]))
        else:
            print(f"No volumes found in pool '{opts.pool}'")
        return

    volumes = []
    for name in names:
        try:
            volumes.append(opts.get_volume_info(name))
        except VirshError as exc:
            logger.warning("Failed to get info for volume '%s': %s", name, exc)

    filtered = opts.filter_volumes(volumes)
    print(opts.render_json(filtered) if opts.json else opts.render_human(filtered))