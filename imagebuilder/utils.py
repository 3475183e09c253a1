"""Utility functions for vm-image-builder."""

from __future__ import annotations

import datetime
import ipaddress
import os
import subprocess
from typing import List, Optional

from imagebuilder.constants import (
    BUILD_DATE_FORMAT,
    IMAGE_NAME_RE,
    TRUTHY,
    UUID_RE,
)
from imagebuilder.exceptions import BuildError, CommandError


def log(level: str, message: str) -> None:
    """Lightweight structured logging compatible with existing colour expectation."""
    if level == "DEBUG" and not _LOG_VERBOSE:
        return
    colours = {
        "INFO": "\033[0;34m",
        "WARN": "\033[1;33m",
        "ERROR": "\033[0;31m",
        "SUCCESS": "\033[0;32m",
        "DEBUG": "\033[0;90m",
    }
    colour = colours.get(level, "")
    reset = "\033[0m" if colour else ""
    print(f"{colour}[{level}]{reset} {message}", flush=True)


def get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def get_env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.lower() in TRUTHY


_LOG_VERBOSE = get_env_bool("LOG_VERBOSE")


def parse_float_env(name: str, default: str, min_val: float = 0.0) -> float:
    raw = get_env(name, default)
    assert raw is not None
    try:
        value = float(raw)
    except ValueError:
        raise BuildError(f"{name} must be a number (got '{raw}')")
    if value < min_val:
        raise BuildError(f"{name} must be >= {min_val} (got {value})")
    return value


def compute_build_date(today: Optional[datetime.date] = None) -> str:
    """Return the date stamp shared by every artifact of one run."""
    if today is None:
        today = datetime.date.today()
    return today.strftime(BUILD_DATE_FORMAT)


def validate_ipv4(label: str, raw: str) -> str:
    try:
        return str(ipaddress.IPv4Address(raw.strip()))
    except ValueError:
        raise BuildError(f"Invalid {label} '{raw}'. Expected a dotted IPv4 address (e.g. 192.0.2.10)")


def validate_netmask(raw: str) -> str:
    value = validate_ipv4("netmask", raw)
    try:
        ipaddress.IPv4Network(f"0.0.0.0/{value}")
    except ValueError:
        raise BuildError(f"Invalid netmask '{raw}'. Bits must be contiguous (e.g. 255.255.255.0)")
    return value


def validate_vlan(raw: str) -> int:
    try:
        value = int(str(raw).strip())
    except ValueError:
        raise BuildError(f"VLAN id must be an integer (got '{raw}')")
    if not 0 <= value <= 4094:
        raise BuildError(f"VLAN id must be between 0 and 4094 (got {value})")
    return value


def validate_uuid(label: str, raw: str) -> str:
    value = raw.strip().lower()
    if not UUID_RE.fullmatch(value):
        raise BuildError(f"Invalid {label} '{raw}'. Expected a UUID (e.g. 00000000-0000-0000-0000-000000000000)")
    return value


def validate_image_name(raw: str) -> str:
    value = raw.strip()
    if not IMAGE_NAME_RE.match(value):
        raise BuildError(
            f"Invalid image name '{raw}'. Use letters, digits, '.', '_' or '-' (e.g. 'centos-7')"
        )
    return value


def run(cmd: List[str], check: bool = True, **kwargs) -> subprocess.CompletedProcess:
    """Run command with logging, capturing output and raising CommandError on failure."""
    log("DEBUG", f"Running: {' '.join(cmd)}")
    kwargs.setdefault("capture_output", True)
    try:
        result = subprocess.run(cmd, check=False, text=True, **kwargs)
    except FileNotFoundError as exc:
        raise BuildError(f"Required tool not found: {cmd[0]}") from exc
    if check and result.returncode != 0:
        raise CommandError(cmd, result.returncode, result.stderr or "")
    return result
