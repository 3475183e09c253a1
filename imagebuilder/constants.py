"""Global constants and path configuration for vm-image-builder."""

from __future__ import annotations

import os
import re
from pathlib import Path

DEFAULT_CONFIG_PATH = Path(os.environ.get("IMAGEBUILDER_CONFIG", "/etc/imagebuilder/builder.yaml"))
CONFIG_PATH_EXPLICIT = "IMAGEBUILDER_CONFIG" in os.environ

# Scratch descriptor handed to ``vmadm create``; lives in the working directory.
TEMPLATE_FILE_NAME = "blank.json"

VMADM_BIN = "vmadm"
ZFS_BIN = "zfs"
MANIFEST_TOOL = "sdc-vmmanifest"
ZFS_POOL = "zones"

# Key in the ``tools`` config section -> environment variable that overrides it.
TOOL_ENV_VARS = {
    "vmadm": "VMADM_BIN",
    "zfs": "ZFS_BIN",
    "manifest_tool": "MANIFEST_TOOL",
    "pool": "ZFS_POOL",
}

TRUTHY = {"1", "true", "yes", "on"}

BUILD_DATE_FORMAT = "%Y%m%d"
ARTIFACT_SUFFIX = ".zfs.gz"
MANIFEST_SUFFIX = ".json"

# Seconds.
DEFAULT_POLL_INTERVAL = "1"
DEFAULT_POLL_MAX_INTERVAL = "1"
DEFAULT_POLL_BACKOFF = "1.0"
DEFAULT_POLL_TIMEOUT = "21600"
DEFAULT_POLL_SETTLE = "10"
DEFAULT_PREFLIGHT_SETTLE = "5"

STATE_STOPPED = "stopped"

# Boot once from the attached CD, then fall back to the disk.
ISO_BOOT_ORDER = "cd"
ISO_BOOT_ONCE = "d"
ISO_CDROM_MODEL = "ide"

DEFAULT_TEMPLATE = {
    "brand": "kvm",
    "ram": 2048,
    "vcpus": 2,
    "disk_size": 10240,
    "disk_model": "virtio",
    "nic_model": "virtio",
    "nic_tag": "external",
    "cpu_type": "host",
    "os": "linux",
}

UUID_RE = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}")
CREATED_VM_RE = re.compile(r"Successfully created VM (" + UUID_RE.pattern + r")")
IMAGE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CANCELLED = 130
