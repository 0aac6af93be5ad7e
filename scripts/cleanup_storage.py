#!/usr/bin/env python3
"""
Local storage maintenance: purge stale drafts, pending submissions and session
snapshots from the local storage file.
"""

import argparse
import sys
import json
from dataclasses import asdict
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from fieldguard.core import config
from fieldguard.core.drafts import DraftStore
from fieldguard.core.schema import CleanupResult, StorageStats
from fieldguard.core.storage import SQLiteStorage


def format_cleanup(result: CleanupResult) -> str:
    """Format a cleanup result for display."""
    lines = [
        "Operation: storage_cleanup",
        f"Keys Removed: {result.keys_removed}",
        f"Bytes Freed: {result.bytes_freed}",
    ]
    if result.removed_keys:
        lines.append("Removed:")
        for key in result.removed_keys:
            lines.append(f"  - {key}")
    return "\n".join(lines)


def format_stats(stats: StorageStats) -> str:
    """Format storage statistics for display."""
    return "\n".join([
        "Storage Statistics:",
        f"  Total keys: {stats.total_keys} ({stats.total_bytes} bytes)",
        f"  App keys: {stats.app_keys} ({stats.app_bytes} bytes)",
        f"  Drafts: {stats.draft_count}",
        f"  Pending submissions: {stats.pending_count}",
    ])


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Local draft storage maintenance",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                  # Remove stale entries
  %(prog)s --stats          # Show usage statistics only
  %(prog)s --json           # Output the cleanup report as JSON
  %(prog)s --clear-all      # Remove every app entry (all schema versions)

Environment variables:
- LOCAL_STORAGE_PATH=./data/local_storage.db (storage location)
- STORAGE_PREFIX=correction-ui, STORAGE_VERSION=v1 (key namespace)
        """
    )

    parser.add_argument(
        "--storage-path", "-p",
        default=None,
        help=f"Local storage file (default: {config.LOCAL_STORAGE_PATH})"
    )

    parser.add_argument(
        "--stats", "-s",
        action="store_true",
        help="Show storage statistics without removing anything"
    )

    parser.add_argument(
        "--clear-all",
        action="store_true",
        help="Remove all app entries, including fresh drafts and queued submissions"
    )

    parser.add_argument(
        "--json", "-j",
        action="store_true",
        help="Output results as JSON instead of human-readable text"
    )

    args = parser.parse_args(argv)

    if args.stats and args.clear_all:
        parser.error("--stats cannot be combined with --clear-all")

    drafts = DraftStore(SQLiteStorage(args.storage_path))

    if args.stats:
        stats = drafts.get_storage_stats()
        print(json.dumps(asdict(stats), indent=2) if args.json else format_stats(stats))
        return 0

    if args.clear_all:
        removed = drafts.clear_all_app_storage()
        if args.json:
            print(json.dumps({"keys_removed": removed}, indent=2))
        else:
            print(f"Removed {removed} app storage entries")
        return 0

    result = drafts.cleanup_stale_storage()
    print(json.dumps(asdict(result), indent=2) if args.json else format_cleanup(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
