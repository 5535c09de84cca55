"""Libvirt domain XML generation for bootc virtual machines."""

from __future__ import annotations

import platform
import uuid
from dataclasses import dataclass, field, replace

DEFAULT_MEMORY_MB = 4096
DEFAULT_VCPUS = 2

QEMU_NAMESPACE = "http://libvirt.org/schemas/domain/qemu/1.0"
BOOTC_NAMESPACE = "https://github.com/containers/bootc"

_ARCH_ALIASES = {
    "amd64": "x86_64",
    "x64": "x86_64",
    "arm64": "aarch64",
}

_MACHINES = {
    "x86_64": "q35",
    "aarch64": "virt",
}

_FEATURES = {
    "x86_64": """
  <features>
    <acpi/>
    <apic/>
    <vmport state='off'/>
  </features>""",
    "aarch64": """
  <features>
    <acpi/>
    <gic version='3'/>
  </features>""",
}

_DEFAULT_FEATURES = """
  <features>
    <acpi/>
  </features>"""

_TIMERS = {
    "x86_64": """
    <timer name='rtc' tickpolicy='catchup'/>
    <timer name='pit' tickpolicy='delay'/>
    <timer name='hpet' present='no'/>""",
}

_DEFAULT_TIMERS = """
    <timer name='rtc' tickpolicy='catchup'/>"""


@dataclass(frozen=True)
class ArchConfig:
    """Architecture-specific settings used in domain XML."""

    arch: str
    machine: str
    os_type: str = "hvm"

    @classmethod
    def detect(cls) -> "ArchConfig":
        """Return the configuration for the host architecture."""
        raw = platform.machine().lower()
        arch = _ARCH_ALIASES.get(raw, raw)
        return cls(arch=arch, machine=_MACHINES.get(arch, "virt"))

    def xml_features(self) -> str:
        """The <features> block for this architecture."""
        return _FEATURES.get(self.arch, _DEFAULT_FEATURES)

    def xml_timers(self) -> str:
        """Timer elements placed inside <clock>."""
        return _TIMERS.get(self.arch, _DEFAULT_TIMERS)

    def cpu_mode(self) -> str:
        """CPU mode attribute for the <cpu> element."""
        return "host-passthrough"


@dataclass(frozen=True)
class DomainBuilder:
    """Immutable builder for libvirt domain XML; each ``with_*`` returns a new builder."""

    name: str | None = None
    uuid: str | None = None
    memory: int | None = None
    vcpus: int | None = None
    disk_path: str | None = None
    network: str | None = None
    vnc_port: int | None = None
    kernel_args: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    qemu_args: tuple[str, ...] = ()

    def with_name(self, name: str) -> "DomainBuilder":
        return replace(self, name=name)

    def with_memory(self, memory_mb: int) -> "DomainBuilder":
        return replace(self, memory=memory_mb)

    def with_vcpus(self, vcpus: int) -> "DomainBuilder":
        return replace(self, vcpus=vcpus)

    def with_disk(self, disk_path: str) -> "DomainBuilder":
        return replace(self, disk_path=disk_path)

    def with_network(self, network: str) -> "DomainBuilder":
        return replace(self, network=network)

    def with_vnc(self, port: int) -> "DomainBuilder":
        return replace(self, vnc_port=port)

    def with_kernel_args(self, kernel_args: str) -> "DomainBuilder":
        return replace(self, kernel_args=kernel_args)

    def with_metadata(self, key: str, value: str) -> "DomainBuilder":
        return replace(self, metadata={**self.metadata, key: value})

    def with_qemu_args(self, args) -> "DomainBuilder":
        return replace(self, qemu_args=tuple(args))

    def build_xml(self) -> str:
        """Render the domain XML. Raises ValueError if no name was set."""
        if self.name is None:
            raise ValueError("Domain name is required")
        memory = self.memory if self.memory is not None else DEFAULT_MEMORY_MB
        vcpus = self.vcpus if self.vcpus is not None else DEFAULT_VCPUS
        domain_uuid = self.uuid or str(uuid.uuid4())
        arch = ArchConfig.detect()

        root = '<domain type="kvm">'
        if self.qemu_args:
            root = f'<domain type="kvm" xmlns:qemu="{QEMU_NAMESPACE}">'

        parts = [
            f"""{root}
  <name>{self.name}</name>
  <uuid>{domain_uuid}</uuid>
  <memory unit="MiB">{memory}</memory>
  <currentMemory unit="MiB">{memory}</currentMemory>
  <vcpu>{vcpus}</vcpu>
  <os>
    <type arch="{arch.arch}" machine="{arch.machine}">{arch.os_type}</type>
    <boot dev="hd"/>"""
        ]
        if self.kernel_args is not None:
            parts.append(f"\n    <cmdline>{self.kernel_args}</cmdline>")
        parts.append("\n  </os>")
        parts.append(arch.xml_features())
        parts.append(f'\n  <cpu mode="{arch.cpu_mode()}"/>')
        parts.append('\n  <clock offset="utc">')
        parts.append(arch.xml_timers())
        parts.append(
            """
  </clock>
  <on_poweroff>destroy</on_poweroff>
  <on_reboot>restart</on_reboot>
  <on_crash>destroy</on_crash>"""
        )
        parts.append("\n  <devices>")

        if self.disk_path is not None:
            parts.append(
                f"""
    <disk type="file" device="disk">
      <driver name="qemu" type="raw"/>
      <source file="{self.disk_path}"/>
      <target dev="vda" bus="virtio"/>
    </disk>"""
            )

        parts.append(self._network_xml())

        parts.append(
            """
    <serial type="pty">
      <target port="0"/>
    </serial>
    <console type="pty">
      <target type="serial" port="0"/>
    </console>"""
        )

        if self.vnc_port is not None:
            parts.append(
                f"""
    <graphics type="vnc" port="{self.vnc_port}" listen="127.0.0.1"/>
    <video>
      <model type="vga"/>
    </video>"""
            )

        parts.append("\n  </devices>")

        if self.qemu_args:
            parts.append("\n  <qemu:commandline>")
            parts.extend(f"\n    <qemu:arg value='{arg}'/>" for arg in self.qemu_args)
            parts.append("\n  </qemu:commandline>")

        if self.metadata:
            parts.append("\n  <metadata>")
            parts.append(f'\n    <bootc:container xmlns:bootc="{BOOTC_NAMESPACE}">')
            for key, value in self.metadata.items():
                clean = key.removeprefix("bootc:")
                parts.append(f"\n      <bootc:{clean}>{value}</bootc:{clean}>")
            parts.append("\n    </bootc:container>")
            parts.append("\n  </metadata>")

        parts.append("\n</domain>")
        return "".join(parts)

    def _network_xml(self) -> str:
        network = self.network or "default"
        if network in ("none", "default"):
            return ""
        if network == "user":
            return """
    <interface type="user">
      <model type="virtio"/>
    </interface>"""
        if network.startswith("bridge="):
            bridge = network[len("bridge="):]
            return f"""
    <interface type="bridge">
      <source bridge="{bridge}"/>
      <model type="virtio"/>
    </interface>"""
        return f"""
    <interface type="network">
      <source network="{network}"/>
      <model type="virtio"/>
    </interface>"""