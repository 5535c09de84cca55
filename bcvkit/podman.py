"""Query podman for storage and image information."""

from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass
from typing import Any


class PodmanError(Exception):
    """Raised when podman fails or returns unexpected data."""


@dataclass(frozen=True)
class Store:
    graph_driver_name: str
    graph_root: str


@dataclass(frozen=True)
class PodmanSystemInfo:
    store: Store

    @classmethod
    def from_json(cls, data: Any) -> "PodmanSystemInfo":
        """Build from the parsed output of ``podman system info --format=json``."""
        try:
            store = data["store"]
            driver = store["graphDriverName"]
            root = store["graphRoot"]
        except (KeyError, TypeError) as exc:
            raise PodmanError(f"malformed system info: missing {exc}") from exc
        if not isinstance(driver, str) or not isinstance(root, str):
            raise PodmanError("malformed system info: store fields must be strings")
        return cls(store=Store(graph_driver_name=driver, graph_root=root))


@dataclass(frozen=True)
class ImageInspect:
    size: int

    @classmethod
    def from_json(cls, data: Any) -> "ImageInspect":
        """Build from one entry of ``podman inspect --type=image`` output."""
        try:
            size = data["Size"]
        except (KeyError, TypeError) as exc:
            raise PodmanError(f"malformed image inspect: missing {exc}") from exc
        if isinstance(size, bool) or not isinstance(size, int) or size < 0:
            raise PodmanError(f"malformed image inspect: invalid size {size!r}")
        return cls(size=size)


def _run_json(*args: str) -> Any:
    try:
        proc = subprocess.run(
            ["podman", *args], capture_output=True, text=True, check=False
        )
    except OSError as exc:
        raise PodmanError(f"failed to run podman: {exc}") from exc
    if proc.returncode != 0:
        raise PodmanError(
            f"podman exited with status {proc.returncode}: {proc.stderr.strip()}"
        )
    try:
        return json.loads(proc.stdout)
    except json.JSONDecodeError as exc:
        raise PodmanError(f"invalid JSON from podman: {exc}") from exc


def get_system_info() -> PodmanSystemInfo:
    """Return podman's system information."""
    try:
        return PodmanSystemInfo.from_json(_run_json("system", "info", "--format=json"))
    except PodmanError as exc:
        raise PodmanError(f"podman system info failed: {exc}") from exc


def get_image_size(image: str) -> int:
    """Return the size of a container image in bytes."""
    try:
        result = _run_json("inspect", "--format=json", "--type=image", image)
        if not isinstance(result, list):
            raise PodmanError("expected a JSON array")
        inspected = [ImageInspect.from_json(entry) for entry in result]
    except PodmanError as exc:
        raise PodmanError(f"podman inspect failed for image {image}: {exc}") from exc
    if not inspected:
        raise PodmanError(f"No image found for: {image}")
    return inspected[0].size