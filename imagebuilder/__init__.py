"""vm-image-builder package."""

__all__ = [
    "cli",
    "config",
    "constants",
    "exceptions",
    "inventory",
    "manifest",
    "models",
    "pipeline",
    "poller",
    "storage",
    "template",
    "utils",
]
