from __future__ import annotations

import argparse
import logging
import os
import sys

from oni_agent.batchfix.fixer import BatchFixer, FixerError
from oni_agent.config.load_config import ConfigError, load_config
from oni_agent.utils.file_copy import FileCopyError


_EPILOG = """\
The source directory should either be the pristine dark archive, or a copy
thereof (TIFF files aren't copied, so it doesn't matter whether they exist).
Once complete, the destination will contain an ONI-ingestable batch.

If any key isn't in the source batch, nothing is copied, even for the keys
that are valid.
"""


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="remove-issues",
        description="Copy a batch to a new location, leaving out the given issues.",
        epilog=_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("source", help="Source batch directory.")
    parser.add_argument("destination", help="Destination directory (must not exist).")
    parser.add_argument("issue_keys", nargs="+", metavar="issue_key", help="Issue key, e.g. sn12345678/1900-01-01_01.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log every skipped file.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv if argv is not None else sys.argv[1:])
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        cfg = load_config()
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    src = os.path.abspath(args.source)
    dst = os.path.abspath(args.destination)
    print(f"Source: {src}\nDestination: {dst}")

    try:
        fixer = BatchFixer(src, dst, copy_attempts=cfg.copy.attempts, copy_delay_s=cfg.copy.delay_s)
        fixer.remove_issues(list(args.issue_keys))
    except (FixerError, FileCopyError, OSError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    print(f"Removed {len(args.issue_keys)} issue(s); new batch is at {dst}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
