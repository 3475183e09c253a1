"""Custom exceptions for vm-image-builder."""

from __future__ import annotations

from typing import Sequence


class BuildError(RuntimeError):
    """Raised on unrecoverable configuration or runtime errors."""


class CommandError(BuildError):
    """An external tool exited with a failure status."""

    def __init__(self, argv: Sequence[str], returncode: int, stderr: str = "") -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        message = f"Command failed ({returncode}): {' '.join(self.argv)}"
        if self.stderr:
            message += f"\n{self.stderr}"
        super().__init__(message)


class InventoryLookupError(BuildError):
    """The VM inventory could not be searched (as opposed to finding nothing)."""


class PollTimeout(BuildError):
    """The VM did not reach the awaited state in time."""


class PollCancelled(BuildError):
    """The build was interrupted by the operator."""
