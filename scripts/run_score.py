"""Recompute signals and scores for all active listings."""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from listing_index.cli import score_main


if __name__ == "__main__":
    sys.exit(score_main())
