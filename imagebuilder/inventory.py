"""vmadm-backed VM inventory for vm-image-builder."""

from __future__ import annotations

import json
import shutil
from pathlib import Path
from typing import Any, Dict, List

from imagebuilder.constants import (
    CREATED_VM_RE,
    ISO_BOOT_ONCE,
    ISO_BOOT_ORDER,
    ISO_CDROM_MODEL,
    UUID_RE,
    VMADM_BIN,
)
from imagebuilder.exceptions import BuildError, InventoryLookupError
from imagebuilder.models import ConsoleInfo
from imagebuilder.utils import log, run


class VmInventory:
    def __init__(self, vmadm: str = VMADM_BIN) -> None:
        self.vmadm = vmadm

    def lookup(self, name: str) -> List[str]:
        """Return the UUIDs of every VM whose alias is exactly ``name``.

        An empty list means the inventory was searched and nothing matched;
        a failed search raises InventoryLookupError instead.
        """
        try:
            result = run([self.vmadm, "lookup", f"alias={name}"])
        except BuildError as exc:
            raise InventoryLookupError(f"Could not search VM inventory for '{name}': {exc}") from exc
        return [line.strip() for line in result.stdout.splitlines() if UUID_RE.fullmatch(line.strip())]

    def get(self, uuid: str) -> Dict[str, Any]:
        result = run([self.vmadm, "get", uuid])
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise BuildError(f"Unparseable vmadm output for {uuid}: {exc}") from exc
        if not isinstance(data, dict):
            raise BuildError(f"Unexpected vmadm output for {uuid}")
        return data

    def create(self, template_path: Path) -> str:
        result = run([self.vmadm, "create", "-f", str(template_path)])
        # vmadm reports the new UUID on stderr.
        output = f"{result.stderr or ''}\n{result.stdout or ''}"
        match = CREATED_VM_RE.search(output)
        if match is None:
            raise BuildError(f"vmadm create succeeded but no VM UUID was reported:\n{output.strip()}")
        return match.group(1)

    def zone_root(self, uuid: str) -> Path:
        zonepath = self.get(uuid).get("zonepath") or f"/zones/{uuid}"
        return Path(zonepath) / "root"

    def copy_iso(self, uuid: str, iso_path: Path) -> str:
        """Place the ISO in the VM's filesystem root; returns its in-zone path."""
        dest = self.zone_root(uuid) / iso_path.name
        log("INFO", f"Copying {iso_path.name} into VM {uuid}")
        try:
            shutil.copyfile(iso_path, dest)
        except OSError as exc:
            raise BuildError(f"Failed to copy ISO to {dest}: {exc}") from exc
        return f"/{iso_path.name}"

    def start_from_iso(self, uuid: str, iso_in_zone: str) -> None:
        run(
            [
                self.vmadm,
                "start",
                uuid,
                f"order={ISO_BOOT_ORDER},once={ISO_BOOT_ONCE}",
                f"cdrom={iso_in_zone},{ISO_CDROM_MODEL}",
            ]
        )

    def state(self, uuid: str) -> str:
        state = self.get(uuid).get("state")
        if not state:
            raise BuildError(f"vmadm did not report a state for {uuid}")
        return str(state)

    def console_info(self, uuid: str) -> ConsoleInfo:
        result = run([self.vmadm, "info", uuid, "vnc"])
        try:
            vnc = json.loads(result.stdout).get("vnc", {})
            return ConsoleInfo(host=str(vnc["host"]), port=int(vnc["port"]), display=vnc.get("display"))
        except (json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError) as exc:
            raise BuildError(f"Unexpected VNC info for {uuid}: {result.stdout.strip()}") from exc

    def delete(self, uuid: str) -> None:
        run([self.vmadm, "delete", uuid])
