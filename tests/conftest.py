"""Shared test fixtures and in-memory stand-ins for vmadm, zfs and the manifest tool."""

from __future__ import annotations

import gzip
import json
from pathlib import Path

import pytest

from imagebuilder.exceptions import CommandError, InventoryLookupError
from imagebuilder.manifest import ManifestPackager
from imagebuilder.models import BuildRequest, ConsoleInfo, PipelineContext, PollSettings, TemplateDefaults
from imagebuilder.storage import ZfsStorage

OWNER = "00000000-0000-0000-0000-000000000000"
NETWORK = "9ec60129-9034-47b4-b111-3026f9b1a10f"
BUILD_DATE = "20261019"


class FakeInventory:
    """Keeps VMs in a dict; ``states`` is replayed by ``state()``, the last entry repeating."""

    def __init__(self, states=("running", "stopped")) -> None:
        self.vms = {}
        self.deleted = []
        self.started = []
        self.copied = []
        self.calls = []
        self.fail_lookup = False
        self.fail_delete = False
        self._states = list(states)
        self._counter = 0

    def set_states(self, *states: str) -> None:
        self._states = list(states)

    def add(self, alias: str) -> str:
        self._counter += 1
        uuid = f"{self._counter:08x}-0000-4000-8000-000000000000"
        self.vms[uuid] = alias
        return uuid

    def lookup(self, name):
        self.calls.append(("lookup", name))
        if self.fail_lookup:
            raise InventoryLookupError("Could not search VM inventory")
        return [uuid for uuid, alias in self.vms.items() if alias == name]

    def create(self, template_path: Path) -> str:
        self.calls.append(("create", template_path))
        data = json.loads(template_path.read_text())
        return self.add(data["alias"])

    def copy_iso(self, uuid, iso_path):
        self.calls.append(("copy_iso", uuid))
        self.copied.append((uuid, iso_path))
        return f"/{iso_path.name}"

    def start_from_iso(self, uuid, iso_in_zone):
        self.calls.append(("start", uuid))
        self.started.append((uuid, iso_in_zone))

    def console_info(self, uuid):
        self.calls.append(("console_info", uuid))
        return ConsoleInfo(host="10.99.99.7", port=39713, display=33813)

    def state(self, uuid):
        self.calls.append(("state", uuid))
        if len(self._states) > 1:
            return self._states.pop(0)
        return self._states[0]

    def get(self, uuid):
        if uuid not in self.vms:
            raise CommandError(["vmadm", "get", uuid], 1, f"vmadm: VM {uuid} not found")
        return {
            "uuid": uuid,
            "alias": self.vms[uuid],
            "zonepath": f"/zones/{uuid}",
            "disks": [{"zfs_filesystem": f"zones/{uuid}-disk0"}],
        }

    def delete(self, uuid):
        self.calls.append(("delete", uuid))
        if self.fail_delete:
            raise CommandError(["vmadm", "delete", uuid], 1, "vmadm: delete failed")
        if uuid not in self.vms:
            raise CommandError(["vmadm", "delete", uuid], 1, f"vmadm: VM {uuid} not found")
        del self.vms[uuid]
        self.deleted.append(uuid)


class FakeStorage(ZfsStorage):
    def __init__(self, payload: bytes = b"zfs-stream" * 64, fail_export: bool = False) -> None:
        super().__init__(zfs="zfs", pool="zones")
        self.payload = payload
        self.fail_export = fail_export
        self.snapshots = []
        self.exports = []

    def snapshot(self, dataset, build_date):
        name = f"{dataset}@{build_date}"
        self.snapshots.append(name)
        return name

    def export(self, snapshot, dest, compresslevel=6, cancel=None):
        self.exports.append((snapshot, dest))
        if self.fail_export:
            raise CommandError(["zfs", "send", snapshot], 1, "cannot open snapshot")
        dest.write_bytes(gzip.compress(self.payload))
        return dest.stat().st_size


class FakePackager(ManifestPackager):
    def __init__(self, fail: bool = False) -> None:
        super().__init__(tool="sdc-vmmanifest")
        self.fail = fail
        self.calls = []

    def package(self, dest, artifact, name, size, version, description, homepage, os_family):
        self.calls.append(
            dict(artifact=artifact, name=name, size=size, version=version,
                 description=description, homepage=homepage, os_family=os_family)
        )
        if self.fail:
            raise CommandError(["sdc-vmmanifest"], 2, "usage error")
        dest.write_text(json.dumps({"name": name, "version": version, "os": os_family}))
        return dest


@pytest.fixture
def iso_file(tmp_path) -> Path:
    iso = tmp_path / "custom.iso"
    iso.write_bytes(b"\x00CD001" * 128)
    return iso


@pytest.fixture
def build_request(iso_file) -> BuildRequest:
    return BuildRequest(
        iso_path=iso_file,
        image_name="centos-7",
        description="CentOS 7 base image",
        homepage="https://www.centos.org/",
        owner_uuid=OWNER,
        ip="192.0.2.21",
        netmask="255.255.255.0",
        gateway="192.0.2.1",
        vlan_id=0,
        network_uuid=NETWORK,
        os_family="linux",
    )


@pytest.fixture
def workdir(tmp_path) -> Path:
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def pipeline_context(build_request, workdir) -> PipelineContext:
    return PipelineContext(request=build_request, build_date=BUILD_DATE, workdir=workdir)


@pytest.fixture
def template_defaults() -> TemplateDefaults:
    return TemplateDefaults()


@pytest.fixture
def poll_settings() -> PollSettings:
    return PollSettings(interval=1.0, max_interval=1.0, backoff=1.0, timeout=60.0, settle=10.0)


@pytest.fixture
def fake_inventory() -> FakeInventory:
    return FakeInventory()


@pytest.fixture
def fake_storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def fake_packager() -> FakePackager:
    return FakePackager()


@pytest.fixture
def mock_env(monkeypatch):
    """Helper to set environment variables for tests."""

    def _set(**kwargs):
        for key, value in kwargs.items():
            if value is None:
                monkeypatch.delenv(key, raising=False)
            else:
                monkeypatch.setenv(key, str(value))

    return _set


_CONFIG_ENV_VARS = [
    "POLL_INTERVAL",
    "POLL_MAX_INTERVAL",
    "POLL_BACKOFF",
    "POLL_TIMEOUT",
    "POLL_SETTLE",
    "PREFLIGHT_SETTLE",
    "VMADM_BIN",
    "ZFS_BIN",
    "MANIFEST_TOOL",
    "ZFS_POOL",
]


@pytest.fixture
def clean_env(monkeypatch):
    """Clear every environment variable the config layer reads."""
    for key in _CONFIG_ENV_VARS:
        monkeypatch.delenv(key, raising=False)
