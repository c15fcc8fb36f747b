"""Allow ``python -m vrcam_bridge`` to launch the bridge."""

from __future__ import annotations

from .app.master import main

if __name__ == "__main__":
    raise SystemExit(main())
