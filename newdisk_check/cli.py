"""Command line entry point"""

from __future__ import annotations

import argparse
import sys

from . import VERSION
from .errors import CheckError, UsageError
from .models import RunMode
from .output import Colors, session_log_path, setup_logging
from .stages import PipelineContext, run_pipeline
from .system import DiskTools, check_root, check_tools


class ArgumentParser(argparse.ArgumentParser):
    """argparse that raises UsageError instead of exiting with status 2"""

    def error(self, message: str) -> None:
        raise UsageError(f"{message}\n{self.format_usage().strip()}")


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="newdisk-check",
        allow_abbrev=False,
        description="Validate a new disk before adding it to a ZFS pool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sudo newdisk-check /dev/sdb
  sudo newdisk-check --safe-mode /dev/sdb

WARNING: without --safe-mode this ERASES ALL DATA on the device
        """,
    )
    parser.add_argument("device", nargs="?", help="Device path to test (e.g., /dev/sdb)")
    parser.add_argument(
        "--safe-mode",
        action="store_true",
        help="Run only non-destructive checks (no badblocks, no wipefs)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.device:
        raise UsageError(f"Usage: {parser.prog} [--safe-mode] /dev/sdX")
    return args


def main(argv: list[str] | None = None, tools: DiskTools | None = None) -> int:
    """Main entry point"""
    # Opening the log under /var/log is the first privilege check
    log_path = session_log_path()
    reporter = setup_logging(log_path)

    try:
        args = parse_args(argv)
        check_root()
    except CheckError as e:
        reporter.error(str(e))
        return 1

    mode = RunMode.SAFE if args.safe_mode else RunMode.INTERACTIVE
    if mode is RunMode.SAFE:
        reporter.warn("SAFE MODE ENABLED - no destructive tests will run.")

    try:
        check_tools()
    except CheckError as e:
        reporter.error(str(e))
        return 1

    ctx = PipelineContext(requested_path=args.device, mode=mode, reporter=reporter, tools=tools or DiskTools())
    result = run_pipeline(ctx)

    reporter.info(f"Logfile saved to: {log_path}")
    return result.exit_code


def run() -> None:
    try:
        sys.exit(main())
    except CheckError as e:
        print(f"{Colors.RED}[ERROR]{Colors.NC} {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print(f"\n{Colors.YELLOW}Cancelled by user{Colors.NC}")
        sys.exit(1)
