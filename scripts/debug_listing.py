"""Load a single listing and print what extraction and scoring make of it.

Usage: python scripts/debug_listing.py <listing-url> [--headed]
"""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from listing_index.cli import debug_main


if __name__ == "__main__":
    sys.exit(debug_main())
