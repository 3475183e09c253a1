"""Manifest generation via the external manifest tool."""

from __future__ import annotations

import tempfile
from pathlib import Path

from imagebuilder.constants import MANIFEST_TOOL
from imagebuilder.utils import log, run


class ManifestPackager:
    def __init__(self, tool: str = MANIFEST_TOOL) -> None:
        self.tool = tool

    def command(
        self,
        artifact: Path,
        name: str,
        size: int,
        version: str,
        description: str,
        homepage: str,
        os_family: str,
    ) -> list:
        return [
            self.tool,
            "-f", str(artifact),
            "-n", name,
            "-o", os_family,
            "-s", str(size),
            "-v", version,
            "-d", description,
            "-h", homepage,
        ]

    def package(
        self,
        dest: Path,
        artifact: Path,
        name: str,
        size: int,
        version: str,
        description: str,
        homepage: str,
        os_family: str,
    ) -> Path:
        """Run the manifest tool and store its stdout verbatim in ``dest``."""
        cmd = self.command(artifact, name, size, version, description, homepage, os_family)
        result = run(cmd)
        with tempfile.NamedTemporaryFile("w", delete=False, dir=dest.parent, prefix=f".{dest.name}.") as tmp:
            tmp_path = Path(tmp.name)
            try:
                tmp.write(result.stdout)
            except OSError:
                tmp_path.unlink(missing_ok=True)
                raise
        tmp_path.replace(dest)
        log("SUCCESS", f"Wrote manifest {dest}")
        return dest
