"""Bridge between a local control surface and a VR application's virtual camera."""

from __future__ import annotations

from importlib import metadata
from typing import Optional, Sequence

from .app.master import main

try:
    __version__ = metadata.version("vrcam-bridge")
except metadata.PackageNotFoundError:  # pragma: no cover - local dev
    __version__ = "0.0.0"


def run(argv: Optional[Sequence[str]] = None) -> int:
    """Run the bridge until it is signalled to stop; returns the exit status."""
    return main(list(argv) if argv is not None else None)


__all__ = ["__version__", "main", "run"]
