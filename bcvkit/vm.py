"""Helpers for creating persistent libvirt VMs from bootc container images."""

from __future__ import annotations

import hashlib
import logging
import os
import random
import socket
import subprocess
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

SSH_PORT_RANGE = range(2222, 3000)
RANDOM_PORT_ATTEMPTS = 100
MAX_DISK_PATH_ATTEMPTS = 100
HASH_PREFIX_LEN = 8
SYSTEM_IMAGES_DIR = Path("/var/lib/libvirt/images")
USER_IMAGES_SUBDIR = Path(".local/share/libvirt/images")

_PATH_START = "<path>"
_PATH_END = "</path>"


class VmError(Exception):
    """Raised when a VM or its resources cannot be created."""


def generate_unique_vm_name(image: str, existing_domains) -> str:
    """Derive a VM name from an image reference that is not in ``existing_domains``."""
    existing = set(existing_domains)
    base = image.rsplit("/", 1)[-1]
    base = base.split(":", 1)[0]
    sanitized = "".join(c if c.isalnum() or c in "-_" else "-" for c in base)

    candidate = sanitized
    counter = 1
    while candidate in existing:
        counter += 1
        candidate = f"{sanitized}-{counter}"
    return candidate


def extract_pool_path(xml: str) -> Path:
    """Return the target path from a storage pool XML description."""
    start_pos = xml.find(_PATH_START)
    if start_pos >= 0:
        start = start_pos + len(_PATH_START)
        end = xml.find(_PATH_END, start)
        if end >= 0:
            return Path(xml[start:end].strip())
    raise VmError("Could not find path in storage pool XML")


def _pool_dumpxml(uri: str) -> subprocess.CompletedProcess:
    return subprocess.run(
        ["virsh", "-c", uri, "pool-dumpxml", "default"],
        capture_output=True,
        check=False,
    )


def get_libvirt_storage_pool_path() -> Path:
    """Path of the default libvirt storage pool, trying the session then the system URI."""
    proc = None
    try:
        proc = _pool_dumpxml("qemu:///session")
    except OSError as exc:
        logger.debug("virsh session query failed: %s", exc)

    if proc is None or proc.returncode != 0:
        try:
            proc = _pool_dumpxml("qemu:///system")
        except OSError as exc:
            raise VmError(f"Failed to query libvirt storage pool: {exc}") from exc

    if proc.returncode != 0:
        raise VmError("Failed to get default storage pool info")

    try:
        xml = proc.stdout.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise VmError(f"Invalid UTF-8 in virsh output: {exc}") from exc
    return extract_pool_path(xml)


def _fallback_images_dir() -> Path:
    home = os.environ.get("HOME")
    if home is not None:
        return Path(home) / USER_IMAGES_SUBDIR
    return SYSTEM_IMAGES_DIR


def _image_hash_prefix(source_image: str) -> str:
    return hashlib.sha256(source_image.encode("utf-8")).hexdigest()[:HASH_PREFIX_LEN]


def create_disk_path(vm_name: str, source_image: str, base_dir=None) -> Path:
    """Pick an unused ``.raw`` disk path for a VM, suffixed with a hash of the image.

    Without ``base_dir`` the default libvirt pool is queried, falling back to
    the user's or the system's images directory.
    """
    if base_dir is None:
        try:
            base = get_libvirt_storage_pool_path()
        except VmError:
            base = _fallback_images_dir()
    else:
        base = Path(base_dir)

    try:
        base.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise VmError(f"Failed to create directory: {base}: {exc}") from exc

    prefix = _image_hash_prefix(source_image)
    for counter in range(MAX_DISK_PATH_ATTEMPTS + 1):
        if counter == 0:
            disk_name = f"{vm_name}-{prefix}.raw"
        else:
            disk_name = f"{vm_name}-{prefix}-{counter}.raw"
        disk_path = base / disk_name
        if not disk_path.exists():
            return disk_path
    raise VmError(
        f"Could not create unique disk path after {MAX_DISK_PATH_ATTEMPTS} attempts"
    )


def _port_is_free(port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind(("127.0.0.1", port))
        except OSError:
            return False
    return True


def find_available_ssh_port() -> int:
    """A free local port for SSH forwarding, chosen at random from 2222-2999."""
    for _ in range(RANDOM_PORT_ATTEMPTS):
        port = random.randrange(SSH_PORT_RANGE.start, SSH_PORT_RANGE.stop)
        if _port_is_free(port):
            return port
    for port in SSH_PORT_RANGE:
        if _port_is_free(port):
            return port
    return SSH_PORT_RANGE.start


def ssh_qemu_args(ssh_port: int, smbios_cred: str) -> list[str]:
    """QEMU arguments injecting the SSH credential and forwarding the SSH port."""
    return [
        "-smbios",
        f"type=11,value={smbios_cred}",
        "-netdev",
        f"user,id=ssh0,hostfwd=tcp::{ssh_port}-:22",
        "-device",
        "virtio-net-pci,netdev=ssh0,addr=0x3",
    ]


def _virsh(*args: str, action: str) -> None:
    try:
        proc = subprocess.run(["virsh", *args], capture_output=True, check=False)
    except OSError as exc:
        raise VmError(f"Failed to run virsh {args[0]}: {exc}") from exc
    if proc.returncode != 0:
        stderr = proc.stderr.decode("utf-8", errors="replace")
        raise VmError(f"Failed to {action}: {stderr}")


def define_and_start_domain(domain_name: str, domain_xml: str) -> None:
    """Define a libvirt domain from XML and start it."""
    xml_path = Path(tempfile.gettempdir()) / f"{domain_name}.xml"
    try:
        xml_path.write_text(domain_xml, encoding="utf-8")
    except OSError as exc:
        raise VmError(f"Failed to write domain XML: {exc}") from exc

    _virsh("define", str(xml_path), action="define libvirt domain")
    _virsh("start", domain_name, action="start libvirt domain")

    try:
        xml_path.unlink()
    except OSError:
        pass