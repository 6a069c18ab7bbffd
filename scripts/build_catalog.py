#!/usr/bin/env python3
"""
Build the SQLite compatibility catalog from a JSON seed file.

Usage:
    python scripts/build_catalog.py [--seed PATH] [--output PATH]

The server builds the catalog automatically on first start when the database
file is missing; run this after editing the seed to rebuild it.
"""

import argparse
import sys
from pathlib import Path

# Add parent directory to path for imports when running as script
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from pcbuilder_mcp.db.schema import build_catalog


def main():
    parser = argparse.ArgumentParser(description="Build compatibility catalog")
    parser.add_argument(
        "--seed",
        type=Path,
        default=Path("data/sample_catalog.json"),
        help="JSON seed file (default: data/sample_catalog.json)",
    )
    parser.add_argument(
        "--output", "-o",
        type=Path,
        default=Path("data/catalog.db"),
        help="Output database path (default: data/catalog.db)",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress output",
    )
    args = parser.parse_args()

    if not args.seed.exists():
        print(f"Error: Seed file not found: {args.seed}")
        return 1

    stats = build_catalog(args.seed, args.output)

    if not args.quiet:
        print(f"Categories: {stats['categories']}")
        print(f"Templates: {stats['templates']}")
        print(f"Rules: {stats['rules']} ({stats['rules_skipped']} skipped)")
        print(f"Components: {stats['components']}")
        print(f"Build time: {stats['build_time_seconds']:.2f} seconds")
        print(f"Output: {args.output}")
    return 0


if __name__ == "__main__":
    exit(main())
