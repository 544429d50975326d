"""
Command line interface: install, update, generate-salts, fix-permissions.
"""

import argparse
import json
import os
import sys

from .common import TaskError
from .config import load_config, validate_config
from .installer import install_wordpress
from .logging_config import get_logger, setup_logging
from .site import fix_permissions, generate_salts
from .upgrade import update_wordpress


def print_json(data: dict) -> None:
    """Write a result to stdout as JSON."""
    print(json.dumps(data, indent=2, ensure_ascii=False))


def cmd_install(args: argparse.Namespace) -> int:
    """Download WordPress core unless it is already installed."""
    result = install_wordpress(args.constraint, args.path, args.config, verbose=args.verbose)
    if args.json:
        print_json(result.to_dict())
        return 0

    logger = get_logger()
    if result.skipped:
        logger.info("WordPress is already installed")
    else:
        logger.info(f"Installed WordPress {result.version} in {result.duration_seconds:.1f}s")
    return 0


def cmd_update(args: argparse.Namespace) -> int:
    """Update WordPress core while keeping site content."""
    result = update_wordpress(
        args.constraint,
        args.path,
        args.config,
        dry_run=args.dry_run,
        verbose=args.verbose,
    )
    if args.json:
        print_json(result.to_dict())
        return 0

    logger = get_logger()
    if result.noop:
        logger.info(f"WordPress {result.new_version} is up to date")
    elif result.dry_run:
        count = len(result.plan.paths) if result.plan else 0
        logger.info(
            f"Dry run: {result.previous_version or 'none'} → {result.new_version}, "
            f"{count} paths would be removed"
        )
        if result.plan:
            for rel in result.plan.paths:
                print(rel)
    else:
        logger.info(
            f"Updated WordPress {result.previous_version or '(fresh install)'} → {result.new_version} "
            f"in {result.duration_seconds:.1f}s"
        )
    return 0


def cmd_salts(args: argparse.Namespace) -> int:
    """Write a fresh set of salts."""
    path = generate_salts(args.path, args.config, verbose=args.verbose)
    get_logger().info(f"Wrote new salts to {path}")
    return 0


def cmd_permissions(args: argparse.Namespace) -> int:
    """Create writable directories and open their permissions."""
    for path in fix_permissions(args.path, args.config, verbose=args.verbose):
        get_logger().info(f"Writable: {path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wp-tasks",
        description="WordPress bootstrap tasks: install, update, salts and permissions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Version constraints: '*' (latest), '4.*', 'v4.9.*', '4.9.8', '>=4.9,<5', '^4.9', '4.9.* || 5.0'\n"
            "Environment: WP_TASKS_CONFIG, WP_TASKS_WP_CLI, WP_TASKS_DEBUG"
        ),
    )
    parser.add_argument(
        "--path",
        default=".",
        help="WordPress site root (default: current directory)",
    )
    parser.add_argument(
        "--config",
        dest="config_file",
        help="Configuration file (YAML or JSON)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose output",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Only print warnings and errors",
    )
    parser.add_argument(
        "--log-file",
        help="Also write a debug log to this file",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    commands = [
        ("install", cmd_install, "Download WordPress core files"),
        ("update", cmd_update, "Update WordPress core files, keeping site content"),
        ("generate-salts", cmd_salts, "Write fresh salts to .salts.php"),
        ("fix-permissions", cmd_permissions, "Make upload directories writable"),
    ]
    for name, handler, help_text in commands:
        sub = subparsers.add_parser(name, help=help_text, description=help_text)
        sub.add_argument(
            "constraint",
            nargs="?",
            default="*",
            help="Version constraint (default: '*', the latest release)",
        )
        if name in ("install", "update"):
            sub.add_argument(
                "--json",
                action="store_true",
                help="Print the result as JSON on stdout",
            )
        if name == "update":
            sub.add_argument(
                "--dry-run",
                action="store_true",
                help="Show the stock files that would be removed without changing anything",
            )
        sub.set_defaults(handler=handler, dry_run=False, json=False)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the task runner."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(verbose=args.verbose, quiet=args.quiet, log_file=args.log_file)
    logger = get_logger()

    args.path = os.path.abspath(args.path)

    try:
        args.config = load_config(args.config_file, verbose=args.verbose, root=args.path)
    except ValueError as e:
        logger.error(str(e))
        return 1

    for warning in validate_config(args.config):
        logger.warning(warning)

    try:
        return args.handler(args)
    except TaskError as e:
        logger.error(e.message)
        if e.remediation:
            logger.error(f"Hint: {e.remediation}")
        return 1


def run() -> None:
    """Console script entry point."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(130)
