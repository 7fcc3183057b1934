#!/usr/bin/env python3
"""
snapexport CLI - development entry point.

Thin router around snapexport.cli.main for running from a source checkout.
"""

import sys
from pathlib import Path

# Add src to path for development
src_path = Path(__file__).parent.parent / "src"
if src_path.exists():
    sys.path.insert(0, str(src_path))

from snapexport.cli.main import main


if __name__ == "__main__":
    sys.exit(main())
