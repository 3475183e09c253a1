"""Data models for vm-image-builder."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, NamedTuple, Optional

from imagebuilder.constants import ARTIFACT_SUFFIX, MANIFEST_SUFFIX, MANIFEST_TOOL, VMADM_BIN, ZFS_BIN, ZFS_POOL


class ConsoleInfo(NamedTuple):
    host: str
    port: int
    display: Optional[int] = None


@dataclass(frozen=True)
class BuildRequest:
    iso_path: Path
    image_name: str
    description: str
    homepage: str
    owner_uuid: str
    ip: str
    netmask: str
    gateway: str
    vlan_id: int
    network_uuid: str
    os_family: str = "linux"


@dataclass
class TemplateDefaults:
    brand: str = "kvm"
    ram: int = 2048
    vcpus: int = 2
    disk_size: int = 10240  # MiB
    disk_model: str = "virtio"
    nic_model: str = "virtio"
    nic_tag: str = "external"
    cpu_type: str = "host"
    os: str = "linux"


@dataclass
class ToolPaths:
    vmadm: str = VMADM_BIN
    zfs: str = ZFS_BIN
    manifest_tool: str = MANIFEST_TOOL
    pool: str = ZFS_POOL


@dataclass
class BuildConfig:
    template: TemplateDefaults = field(default_factory=TemplateDefaults)
    tools: ToolPaths = field(default_factory=ToolPaths)


@dataclass
class VmTemplate:
    alias: str
    owner_uuid: str
    brand: str
    ram: int
    vcpus: int
    cpu_type: str
    disks: list = field(default_factory=list)
    nics: list = field(default_factory=list)
    autoboot: bool = False

    @property
    def disk_size(self) -> int:
        return int(self.disks[0]["size"]) if self.disks else 0

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass(frozen=True)
class PollSettings:
    interval: float = 1.0
    max_interval: float = 1.0
    backoff: float = 1.0
    timeout: float = 21600.0  # 0 waits forever
    settle: float = 10.0
    target_state: str = "stopped"


def snapshot_name(dataset: str, build_date: str) -> str:
    return f"{dataset}@{build_date}"


def artifact_filename(image_name: str, build_date: str) -> str:
    return f"{image_name}-{build_date}{ARTIFACT_SUFFIX}"


def manifest_filename(image_name: str, build_date: str) -> str:
    return f"{image_name}-{build_date}{MANIFEST_SUFFIX}"


@dataclass(frozen=True)
class PipelineContext:
    """State threaded through the build stages; each stage returns a new copy."""

    request: BuildRequest
    build_date: str
    workdir: Path
    template_path: Optional[Path] = None
    template: Optional[VmTemplate] = None
    vm_uuid: Optional[str] = None
    console: Optional[ConsoleInfo] = None
    snapshot: Optional[str] = None
    artifact_path: Optional[Path] = None
    manifest_path: Optional[Path] = None

    def with_updates(self, **changes: Any) -> "PipelineContext":
        return dataclasses.replace(self, **changes)

    @property
    def artifact_target(self) -> Path:
        return self.workdir / artifact_filename(self.request.image_name, self.build_date)

    @property
    def manifest_target(self) -> Path:
        return self.workdir / manifest_filename(self.request.image_name, self.build_date)
