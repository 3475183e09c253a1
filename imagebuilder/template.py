"""VM template generation for vm-image-builder."""

from __future__ import annotations

import json
from pathlib import Path

from imagebuilder.exceptions import BuildError
from imagebuilder.models import BuildRequest, TemplateDefaults, VmTemplate
from imagebuilder.utils import log


def render_vm_template(request: BuildRequest, defaults: TemplateDefaults) -> VmTemplate:
    """Describe the throwaway installer VM for ``vmadm create``."""
    disk = {
        "boot": True,
        "model": defaults.disk_model,
        "size": defaults.disk_size,
    }
    nic = {
        "nic_tag": defaults.nic_tag,
        "network_uuid": request.network_uuid,
        "ip": request.ip,
        "netmask": request.netmask,
        "gateway": request.gateway,
        "vlan_id": request.vlan_id,
        "model": defaults.nic_model,
        "primary": True,
    }
    return VmTemplate(
        alias=request.image_name,
        owner_uuid=request.owner_uuid,
        brand=defaults.brand,
        ram=defaults.ram,
        vcpus=defaults.vcpus,
        cpu_type=defaults.cpu_type,
        disks=[disk],
        nics=[nic],
        autoboot=False,
    )


def render_template_json(template: VmTemplate) -> str:
    return json.dumps(template.to_dict(), indent=2, sort_keys=True)


def write_template(template: VmTemplate, path: Path) -> Path:
    try:
        path.write_text(render_template_json(template) + "\n")
    except OSError as exc:
        raise BuildError(f"Cannot write VM template {path}: {exc}") from exc
    log("DEBUG", f"Wrote VM template to {path}")
    return path
