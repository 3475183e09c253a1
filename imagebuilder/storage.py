"""ZFS snapshot and export for vm-image-builder."""

from __future__ import annotations

import gzip
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from imagebuilder.constants import ZFS_BIN, ZFS_POOL
from imagebuilder.exceptions import BuildError, CommandError, PollCancelled
from imagebuilder.models import snapshot_name
from imagebuilder.utils import log, run

_CHUNK_SIZE = 1024 * 1024  # 1 MiB


class ZfsStorage:
    def __init__(self, zfs: str = ZFS_BIN, pool: str = ZFS_POOL) -> None:
        self.zfs = zfs
        self.pool = pool

    def disk_dataset(self, uuid: str, vm: Dict[str, Any]) -> str:
        """Dataset backing the VM's boot disk."""
        disks = vm.get("disks") or []
        if disks and disks[0].get("zfs_filesystem"):
            return str(disks[0]["zfs_filesystem"])
        return f"{self.pool}/{uuid}-disk0"

    def snapshot(self, dataset: str, build_date: str) -> str:
        name = snapshot_name(dataset, build_date)
        run([self.zfs, "snapshot", name])
        log("SUCCESS", f"Created snapshot {name}")
        return name

    def export(
        self,
        snapshot: str,
        dest: Path,
        compresslevel: int = 6,
        cancel: Optional[threading.Event] = None,
    ) -> int:
        """Stream ``zfs send`` through gzip into ``dest``; returns bytes written.

        Output goes to a temp file beside ``dest`` and is renamed on success.
        ``zfs send`` runs in its own session so a terminal Ctrl-C reaches only
        us; setting ``cancel`` stops the stream between chunks.
        """
        cmd = [self.zfs, "send", snapshot]
        log("DEBUG", f"Running: {' '.join(cmd)} | gzip > {dest}")
        proc = None
        with tempfile.NamedTemporaryFile(delete=False, dir=dest.parent, prefix=f".{dest.name}.") as tmp:
            tmp_path = Path(tmp.name)
            try:
                try:
                    proc = subprocess.Popen(
                        cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, start_new_session=True
                    )
                except FileNotFoundError as exc:
                    raise BuildError(f"Required tool not found: {self.zfs}") from exc
                assert proc.stdout is not None
                with gzip.GzipFile(filename="", fileobj=tmp, mode="wb", compresslevel=compresslevel) as gz:
                    while True:
                        if cancel is not None and cancel.is_set():
                            raise PollCancelled(f"Export of {snapshot} cancelled")
                        chunk = proc.stdout.read(_CHUNK_SIZE)
                        if not chunk:
                            break
                        gz.write(chunk)
                proc.stdout.close()
                stderr = proc.stderr.read().decode("utf-8", errors="replace") if proc.stderr else ""
                returncode = proc.wait()
                if returncode != 0:
                    raise CommandError(cmd, returncode, stderr)
                tmp.flush()
            except BaseException:
                if proc is not None and proc.poll() is None:
                    proc.kill()
                    proc.wait()
                tmp_path.unlink(missing_ok=True)
                raise
        tmp_path.replace(dest)
        size = dest.stat().st_size
        log("SUCCESS", f"Exported {snapshot} to {dest} ({size / (1024 * 1024):.1f} MiB)")
        return size
