#!/usr/bin/env python3
from __future__ import annotations

"""Run ddp-dump from a checkout without installing the package.

  ./scripts/ddp_dump.py -u ws://localhost:3000/websocket --all -o dump_%s.json
"""

import sys
from pathlib import Path

# Allow running as a script without installing the package
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from ddp_dump.cli import main


if __name__ == "__main__":
    raise SystemExit(main())
