"""Image build pipeline for vm-image-builder."""

from __future__ import annotations

import contextlib
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional

from imagebuilder.constants import TEMPLATE_FILE_NAME
from imagebuilder.exceptions import BuildError, InventoryLookupError, PollCancelled
from imagebuilder.inventory import VmInventory
from imagebuilder.manifest import ManifestPackager
from imagebuilder.models import PipelineContext, PollSettings, TemplateDefaults
from imagebuilder.poller import wait_for_state
from imagebuilder.storage import ZfsStorage
from imagebuilder.template import render_vm_template, write_template
from imagebuilder.utils import log


class BuildPipeline:
    """Preflight, provision, install, wait, capture and package one image.

    Every external resource is released on every exit path: the scratch
    template and the installer VM are registered for teardown as soon as they
    exist, and half-written artifacts are discarded unless the run completes.
    """

    def __init__(
        self,
        defaults: TemplateDefaults,
        poll_settings: PollSettings,
        inventory: Optional[VmInventory] = None,
        storage: Optional[ZfsStorage] = None,
        packager: Optional[ManifestPackager] = None,
        preflight_settle: float = 5.0,
        ignore_lookup_errors: bool = False,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        self.defaults = defaults
        self.poll_settings = poll_settings
        self.inventory = inventory or VmInventory()
        self.storage = storage or ZfsStorage()
        self.packager = packager or ManifestPackager()
        self.preflight_settle = preflight_settle
        self.ignore_lookup_errors = ignore_lookup_errors
        self.cancel = cancel or threading.Event()
        self._teardown_errors: List[str] = []
        self._completed = False

    def run(self, ctx: PipelineContext) -> PipelineContext:
        self._teardown_errors = []
        self._completed = False
        stages: List[Callable[[PipelineContext, contextlib.ExitStack], PipelineContext]] = [
            self.preflight,
            self.provision,
            self.install,
            self.report_console,
            self.wait_for_install,
            self.snapshot,
            self.export,
            self.package,
        ]
        with contextlib.ExitStack() as stack:
            for stage in stages:
                self._check_cancelled()
                ctx = stage(ctx, stack)
            log("INFO", "Cleaning up")
        if self._teardown_errors:
            raise BuildError("Image built but cleanup failed:\n" + "\n".join(self._teardown_errors))
        log("SUCCESS", f"Image ready: {ctx.artifact_path} + {ctx.manifest_path}")
        return ctx

    def _check_cancelled(self) -> None:
        if self.cancel.is_set():
            raise PollCancelled("Build cancelled")

    def preflight(self, ctx: PipelineContext, stack: Optional[contextlib.ExitStack] = None) -> PipelineContext:
        """Remove any stale VM carrying the image name."""
        name = ctx.request.image_name
        log("INFO", f"Checking for existing VM named '{name}'")
        try:
            stale = self.inventory.lookup(name)
        except InventoryLookupError as exc:
            if not self.ignore_lookup_errors:
                raise
            log("WARN", f"{exc}; assuming no VM named '{name}' exists")
            return ctx
        if not stale:
            return ctx
        for uuid in stale:
            log("WARN", f"Deleting stale VM {uuid} ({name})")
            self.inventory.delete(uuid)
        if self.preflight_settle > 0:
            time.sleep(self.preflight_settle)
        return ctx

    def provision(self, ctx: PipelineContext, stack: contextlib.ExitStack) -> PipelineContext:
        template = render_vm_template(ctx.request, self.defaults)
        template_path = write_template(template, ctx.workdir / TEMPLATE_FILE_NAME)
        stack.callback(self._remove_template, template_path)
        log("INFO", f"Creating VM '{template.alias}'")
        uuid = self.inventory.create(template_path)
        stack.callback(self._release_vm, uuid)
        log("SUCCESS", f"Created VM {uuid}")
        return ctx.with_updates(template=template, template_path=template_path, vm_uuid=uuid)

    def install(self, ctx: PipelineContext, stack: Optional[contextlib.ExitStack] = None) -> PipelineContext:
        uuid = self._require_vm(ctx)
        iso_in_zone = self.inventory.copy_iso(uuid, ctx.request.iso_path)
        log("INFO", f"Booting VM {uuid} from {iso_in_zone}")
        self.inventory.start_from_iso(uuid, iso_in_zone)
        log("SUCCESS", f"VM {uuid} started")
        return ctx

    def report_console(self, ctx: PipelineContext, stack: Optional[contextlib.ExitStack] = None) -> PipelineContext:
        uuid = self._require_vm(ctx)
        try:
            console = self.inventory.console_info(uuid)
        except BuildError as exc:
            log("WARN", f"Could not read VNC details for VM {uuid}: {exc}")
            return ctx
        print_console_banner(ctx.request.image_name, uuid, console.host, console.port)
        return ctx.with_updates(console=console)

    def wait_for_install(self, ctx: PipelineContext, stack: Optional[contextlib.ExitStack] = None) -> PipelineContext:
        uuid = self._require_vm(ctx)
        wait_for_state(self.inventory, uuid, self.poll_settings, cancel=self.cancel)
        return ctx

    def snapshot(self, ctx: PipelineContext, stack: Optional[contextlib.ExitStack] = None) -> PipelineContext:
        uuid = self._require_vm(ctx)
        dataset = self.storage.disk_dataset(uuid, self.inventory.get(uuid))
        name = self.storage.snapshot(dataset, ctx.build_date)
        return ctx.with_updates(snapshot=name)

    def export(self, ctx: PipelineContext, stack: contextlib.ExitStack) -> PipelineContext:
        if ctx.snapshot is None:
            raise BuildError("No snapshot to export")
        dest = ctx.artifact_target
        log("INFO", f"Exporting {ctx.snapshot} to {dest.name}")
        self.storage.export(ctx.snapshot, dest, cancel=self.cancel)
        # Only what this run wrote; a failed export leaves dest untouched.
        stack.callback(self._discard_unfinished, dest)
        return ctx.with_updates(artifact_path=dest)

    def package(self, ctx: PipelineContext, stack: Optional[contextlib.ExitStack] = None) -> PipelineContext:
        if ctx.artifact_path is None or ctx.template is None:
            raise BuildError("No artifact to package")
        request = ctx.request
        manifest = self.packager.package(
            ctx.manifest_target,
            artifact=ctx.artifact_path,
            name=request.image_name,
            size=ctx.template.disk_size,
            version=ctx.build_date,
            description=request.description,
            homepage=request.homepage,
            os_family=request.os_family,
        )
        self._completed = True
        return ctx.with_updates(manifest_path=manifest)

    @staticmethod
    def _require_vm(ctx: PipelineContext) -> str:
        if ctx.vm_uuid is None:
            raise BuildError("VM has not been created")
        return ctx.vm_uuid

    def _remove_template(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            self._teardown_errors.append(f"Failed to remove {path}: {exc}")
            log("WARN", f"Failed to remove {path}: {exc}")

    def _release_vm(self, uuid: str) -> None:
        log("INFO", f"Deleting VM {uuid}")
        try:
            self.inventory.delete(uuid)
        except BuildError as exc:
            self._teardown_errors.append(f"VM {uuid} must be deleted manually: {exc}")
            log("ERROR", f"Failed to delete VM {uuid}; remove it with 'vmadm delete {uuid}'")

    def _discard_unfinished(self, path: Path) -> None:
        if self._completed:
            return
        log("INFO", f"Removing incomplete output {path}")
        path.unlink(missing_ok=True)


def print_console_banner(name: str, uuid: str, host: str, port: int) -> None:
    """Print the VNC endpoint the operator connects to for the installation."""
    lines = [
        f"  VM:  {name} ({uuid})",
        f"  VNC: {host}:{port}",
        "  Complete the installation, then power off the guest to continue.",
    ]
    max_len = max(len(line) for line in lines)
    border_len = max_len + 2
    banner_colour = "\033[0;36m"
    reset = "\033[0m"
    print(f"{banner_colour}{'=' * border_len}{reset}", flush=True)
    for line in lines:
        print(f"{banner_colour}{line}{reset}", flush=True)
    print(f"{banner_colour}{'=' * border_len}{reset}", flush=True)
