#!/usr/bin/env python3
"""
Feed registry command line.

Usage:
    python scripts/feeds.py create --name notes
    python scripts/feeds.py resolve-name notes
    python scripts/feeds.py list

    # Or with a custom storage root:
    python scripts/feeds.py --root /var/lib/feeds list
"""

import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from feedstore.cli import main


if __name__ == "__main__":
    sys.exit(main())
