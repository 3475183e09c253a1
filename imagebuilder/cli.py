"""CLI entry points for vm-image-builder."""

from __future__ import annotations

import argparse
import signal
import threading
from pathlib import Path
from typing import List, Optional

from imagebuilder.config import (
    build_request,
    load_build_config,
    parse_poll_settings,
    parse_preflight_settle,
)
from imagebuilder.constants import (
    EXIT_CANCELLED,
    EXIT_FAILURE,
    EXIT_OK,
    TEMPLATE_FILE_NAME,
)
from imagebuilder.exceptions import BuildError, PollCancelled
from imagebuilder.inventory import VmInventory
from imagebuilder.manifest import ManifestPackager
from imagebuilder.models import (
    BuildRequest,
    PipelineContext,
    PollSettings,
    ToolPaths,
    artifact_filename,
    manifest_filename,
)
from imagebuilder.pipeline import BuildPipeline
from imagebuilder.storage import ZfsStorage
from imagebuilder.template import render_template_json, render_vm_template
from imagebuilder.utils import compute_build_date, log


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="imagebuilder",
        description="Build a distributable zvol image from an installer ISO",
        epilog="Set LOG_VERBOSE=1 to trace every external command.",
    )
    required = parser.add_argument_group("required arguments")
    required.add_argument("-i", "--iso", required=True, help="Installer ISO to boot from")
    required.add_argument("-n", "--name", required=True, help="Image name (also the VM alias), e.g. centos-7")
    required.add_argument("-d", "--description", required=True, help="Image description for the manifest")
    required.add_argument("-u", "--homepage", required=True, help="Homepage URL for the manifest")
    required.add_argument("-o", "--owner", required=True, help="Owner UUID for the installer VM")
    required.add_argument("--ip", required=True, help="IPv4 address of the installer VM")
    required.add_argument("--netmask", required=True, help="Netmask of the installer VM")
    required.add_argument("--gateway", required=True, help="Default gateway of the installer VM")
    required.add_argument("--vlan", required=True, help="VLAN id (0 for untagged)")
    required.add_argument("--network", required=True, help="Network UUID for the installer VM NIC")

    parser.add_argument("--os", dest="os_family", default=None, help="OS family recorded in the manifest")
    parser.add_argument("--config", type=Path, default=None, help="YAML file with template defaults and tool paths")
    parser.add_argument(
        "--poll-timeout",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Give up waiting for the installation after this long (0 waits forever)",
    )
    parser.add_argument(
        "--ignore-lookup-errors",
        action="store_true",
        help="Treat a failed inventory search during preflight as 'no stale VM'",
    )
    parser.add_argument("--show-template", action="store_true", help="Print the VM template and exit")
    parser.add_argument("--dry-run", action="store_true", help="Validate inputs and show the planned build, then exit")
    return parser


def show_plan(
    request: BuildRequest, build_date: str, poll: PollSettings, tools: ToolPaths, template_json: str
) -> None:
    """Print what a build would do without touching the host."""
    log("INFO", "=== Build plan ===")
    log("INFO", f"ISO:        {request.iso_path}")
    log("INFO", f"Image:      {request.image_name} (version {build_date}, os {request.os_family})")
    log("INFO", f"Network:    {request.ip}/{request.netmask} via {request.gateway} (vlan {request.vlan_id})")
    log("INFO", f"Artifact:   {artifact_filename(request.image_name, build_date)}")
    log("INFO", f"Manifest:   {manifest_filename(request.image_name, build_date)}")
    if poll.timeout > 0:
        log("INFO", f"Poll:       every {poll.interval:g}s, up to {int(poll.timeout)}s")
    else:
        log("WARN", f"Poll:       every {poll.interval:g}s, no timeout")
    log("INFO", f"Tools:      {tools.vmadm}, {tools.zfs}, {tools.manifest_tool} (pool {tools.pool})")
    print(template_json)
    log("INFO", "=== Dry-run complete (nothing created) ===")


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Fixed for the whole run so every output shares one stamp.
    build_date = compute_build_date()

    try:
        config = load_build_config(args.config)
        defaults, tools = config.template, config.tools
        request = build_request(
            iso=args.iso,
            name=args.name,
            description=args.description,
            homepage=args.homepage,
            owner=args.owner,
            ip=args.ip,
            netmask=args.netmask,
            gateway=args.gateway,
            vlan=args.vlan,
            network=args.network,
            os_family=args.os_family or defaults.os,
        )
        poll_settings = parse_poll_settings(args.poll_timeout)
        preflight_settle = parse_preflight_settle()
    except BuildError as exc:
        log("ERROR", str(exc))
        return EXIT_FAILURE

    template_json = render_template_json(render_vm_template(request, defaults))
    if args.show_template:
        print(template_json)
        return EXIT_OK
    if args.dry_run:
        show_plan(request, build_date, poll_settings, tools, template_json)
        return EXIT_OK

    workdir = Path.cwd()
    log("INFO", f"Building {request.image_name} {build_date} from {request.iso_path.name}")
    log("DEBUG", f"Scratch template: {workdir / TEMPLATE_FILE_NAME}")

    cancel = threading.Event()

    def _request_cancel(signum, frame):
        sig_name = signal.Signals(signum).name
        if cancel.is_set():
            log("WARN", f"{sig_name} received again; still cleaning up")
            return
        log("WARN", f"{sig_name} received, cancelling build")
        cancel.set()

    pipeline = BuildPipeline(
        defaults,
        poll_settings,
        inventory=VmInventory(tools.vmadm),
        storage=ZfsStorage(tools.zfs, tools.pool),
        packager=ManifestPackager(tools.manifest_tool),
        preflight_settle=preflight_settle,
        ignore_lookup_errors=args.ignore_lookup_errors,
        cancel=cancel,
    )
    ctx = PipelineContext(request=request, build_date=build_date, workdir=workdir)

    prev_sigterm = signal.signal(signal.SIGTERM, _request_cancel)
    prev_sigint = signal.signal(signal.SIGINT, _request_cancel)
    try:
        pipeline.run(ctx)
        return EXIT_OK
    except PollCancelled as exc:
        log("WARN", str(exc))
        return EXIT_CANCELLED
    except BuildError as exc:
        log("ERROR", str(exc))
        return EXIT_FAILURE
    except Exception as exc:
        log("ERROR", f"Unexpected error: {exc}")
        import traceback

        traceback.print_exc()
        return EXIT_FAILURE
    finally:
        signal.signal(signal.SIGTERM, prev_sigterm)
        signal.signal(signal.SIGINT, prev_sigint)
