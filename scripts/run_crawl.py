"""Run (or resume) a listing crawl and persist results."""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from listing_index.cli import crawl_main


if __name__ == "__main__":
    sys.exit(crawl_main())
