"""Configuration loading and environment variable parsing for vm-image-builder."""

from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from imagebuilder.constants import (
    CONFIG_PATH_EXPLICIT,
    DEFAULT_CONFIG_PATH,
    DEFAULT_POLL_BACKOFF,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_POLL_MAX_INTERVAL,
    DEFAULT_POLL_SETTLE,
    DEFAULT_POLL_TIMEOUT,
    DEFAULT_PREFLIGHT_SETTLE,
    DEFAULT_TEMPLATE,
    STATE_STOPPED,
    TOOL_ENV_VARS,
)
from imagebuilder.exceptions import BuildError
from imagebuilder.models import BuildConfig, BuildRequest, PollSettings, TemplateDefaults, ToolPaths
from imagebuilder.utils import (
    get_env,
    log,
    parse_float_env,
    validate_image_name,
    validate_ipv4,
    validate_netmask,
    validate_uuid,
    validate_vlan,
)

_INT_FIELDS = {"ram", "vcpus", "disk_size"}
_SECTIONS = {"template", "tools"}


def load_build_config(config_path: Optional[Path] = None, required: Optional[bool] = None) -> BuildConfig:
    """Read template defaults and tool paths from the YAML config.

    Tool paths set in the environment win over the file.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
        if required is None:
            required = CONFIG_PATH_EXPLICIT
    elif required is None:
        required = True

    data: Dict[str, Any] = {}
    if config_path.exists():
        try:
            data = yaml.safe_load(config_path.read_text()) or {}
        except yaml.YAMLError as exc:
            raise BuildError(f"Build config {config_path} contains invalid YAML: {exc}")
        if not isinstance(data, dict):
            raise BuildError(f"Build config {config_path} must be a YAML mapping")
        for key in data:
            if key not in _SECTIONS:
                raise BuildError(f"Unknown section '{key}' in {config_path}. Supported: {', '.join(sorted(_SECTIONS))}")
        log("DEBUG", f"Loaded build config from {config_path}")
    elif required:
        raise BuildError(f"Build config missing: {config_path}")
    else:
        log("DEBUG", f"No build config at {config_path}; using built-in defaults")

    return BuildConfig(
        template=_parse_template(_section(data, "template", config_path), config_path),
        tools=_parse_tools(_section(data, "tools", config_path), config_path),
    )


def _section(data: Dict[str, Any], name: str, config_path: Path) -> Dict[str, Any]:
    section = data.get(name, {}) or {}
    if not isinstance(section, dict):
        raise BuildError(f"'{name}' in {config_path} must be a mapping")
    return section


def _parse_template(section: Dict[str, Any], config_path: Path) -> TemplateDefaults:
    values = dict(DEFAULT_TEMPLATE)
    known = {f.name for f in dataclasses.fields(TemplateDefaults)}
    for key, value in section.items():
        if key not in known:
            raise BuildError(f"Unknown template key '{key}' in {config_path}. Supported: {', '.join(sorted(known))}")
        if key in _INT_FIELDS:
            try:
                value = int(value)
            except (TypeError, ValueError):
                raise BuildError(f"template.{key} must be an integer (got '{value}')")
            if value < 1:
                raise BuildError(f"template.{key} must be >= 1 (got {value})")
        else:
            value = str(value)
        values[key] = value
    return TemplateDefaults(**values)


def _parse_tools(section: Dict[str, Any], config_path: Path) -> ToolPaths:
    values = dataclasses.asdict(ToolPaths())
    for key, value in section.items():
        if key not in TOOL_ENV_VARS:
            raise BuildError(f"Unknown tools key '{key}' in {config_path}. Supported: {', '.join(sorted(TOOL_ENV_VARS))}")
        if value is None or not str(value).strip():
            raise BuildError(f"tools.{key} must not be empty")
        values[key] = str(value).strip()
    for key, env_name in TOOL_ENV_VARS.items():
        override = get_env(env_name)
        if override:
            values[key] = override
    return ToolPaths(**values)


def parse_poll_settings(timeout_override: Optional[float] = None) -> PollSettings:
    interval = parse_float_env("POLL_INTERVAL", DEFAULT_POLL_INTERVAL, min_val=0.1)
    max_interval = parse_float_env("POLL_MAX_INTERVAL", DEFAULT_POLL_MAX_INTERVAL, min_val=0.1)
    backoff = parse_float_env("POLL_BACKOFF", DEFAULT_POLL_BACKOFF, min_val=1.0)
    timeout = parse_float_env("POLL_TIMEOUT", DEFAULT_POLL_TIMEOUT, min_val=0.0)
    settle = parse_float_env("POLL_SETTLE", DEFAULT_POLL_SETTLE, min_val=0.0)
    if timeout_override is not None:
        if timeout_override < 0:
            raise BuildError(f"Poll timeout must be >= 0 (got {timeout_override})")
        timeout = timeout_override
    if max_interval < interval:
        max_interval = interval
    return PollSettings(
        interval=interval,
        max_interval=max_interval,
        backoff=backoff,
        timeout=timeout,
        settle=settle,
        target_state=STATE_STOPPED,
    )


def parse_preflight_settle() -> float:
    return parse_float_env("PREFLIGHT_SETTLE", DEFAULT_PREFLIGHT_SETTLE, min_val=0.0)


def build_request(
    iso: str,
    name: str,
    description: str,
    homepage: str,
    owner: str,
    ip: str,
    netmask: str,
    gateway: str,
    vlan: str,
    network: str,
    os_family: str = "linux",
) -> BuildRequest:
    """Validate raw CLI values into a BuildRequest; nothing external is touched."""
    iso_path = Path(iso).expanduser()
    if not iso_path.exists():
        raise BuildError(f"ISO not found: {iso_path}")
    if not iso_path.is_file():
        raise BuildError(f"ISO must be a regular file: {iso_path}")

    description = description.strip()
    if not description:
        raise BuildError("Description must not be empty")

    homepage = homepage.strip()
    parsed = urlparse(homepage)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise BuildError(f"Invalid homepage '{homepage}'. Expected an http(s) URL")

    os_family = (os_family or "").strip().lower()
    if not os_family:
        raise BuildError("OS family must not be empty")

    return BuildRequest(
        iso_path=iso_path.resolve(),
        image_name=validate_image_name(name),
        description=description,
        homepage=homepage,
        owner_uuid=validate_uuid("owner", owner),
        ip=validate_ipv4("IP", ip),
        netmask=validate_netmask(netmask),
        gateway=validate_ipv4("gateway", gateway),
        vlan_id=validate_vlan(vlan),
        network_uuid=validate_uuid("network", network),
        os_family=os_family,
    )
