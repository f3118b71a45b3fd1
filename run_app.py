#!/usr/bin/env python3
from __future__ import annotations

import sys
from pathlib import Path


def main() -> int:
    root = Path(__file__).resolve().parent
    src_dir = root / "src"
    sys.path.insert(0, str(src_dir))

    # Import after sys.path adjustment so `branchwatch` resolves from a source checkout.
    from branchwatch import app as gui_app

    return gui_app.main(sys.argv)


if __name__ == "__main__":
    raise SystemExit(main())
