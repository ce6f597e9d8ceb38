"""Twin CLI - Argparse setup and command dispatch."""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from twin import __version__
from twin.commands import cmd_build, cmd_init, cmd_plan, cmd_scout, cmd_steer
from twin.config import get_global_config
from twin.errors import ConfigurationError
from twin.utils import Colors

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _positive_int(value: str) -> int:
    n = int(value)
    if n < 0:
        raise argparse.ArgumentTypeError("must be 0 or more")
    return n


def _positive_float(value: str) -> float:
    n = float(value)
    if n <= 0:
        raise argparse.ArgumentTypeError("must be greater than 0")
    return n


def _handle_init(args) -> int:
    return cmd_init(get_global_config())


def _handle_scout(args) -> int:
    return cmd_scout(Path.cwd(), get_global_config())


def _handle_plan(args) -> int:
    return cmd_plan(Path.cwd(), get_global_config())


def _handle_build(args) -> int:
    return cmd_build(
        Path.cwd(),
        max_items=args.max_items,
        loop_mode=args.loop,
        max_minutes=args.max_minutes,
        config=get_global_config(),
    )


def _handle_steer(args) -> int:
    return cmd_steer(Path.cwd(), args.message, get_global_config())


_COMMAND_HANDLERS = {
    "init": _handle_init,
    "scout": _handle_scout,
    "plan": _handle_plan,
    "build": _handle_build,
    "steer": _handle_steer,
}


def _dispatch_command(command: str, args) -> int:
    """Dispatch to appropriate command handler."""
    handler = _COMMAND_HANDLERS.get(command)
    if handler is None:
        print(f"twin: unknown command '{command}'", file=sys.stderr)
        return 1
    try:
        return handler(args)
    except ConfigurationError as e:
        print(f"{Colors.RED}{e}{Colors.NC}", file=sys.stderr)
        if e.hint:
            print(e.hint, file=sys.stderr)
        return 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for twin CLI."""
    parser = _create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, get_global_config().log_level.upper(), logging.WARNING),
        format=LOG_FORMAT,
    )

    if args.command is None:
        parser.print_help()
        return 0

    return _dispatch_command(args.command, args)


def _add_build_parser(subparsers) -> None:
    """Add build subcommand with its options."""
    p = subparsers.add_parser("build", help="Let your twin build open stories")
    p.add_argument(
        "-n",
        "--max-items",
        type=_positive_int,
        default=None,
        help="Stop after building N stories (default: 5, unbounded with --loop)",
    )
    p.add_argument(
        "--loop",
        action="store_true",
        help="Plan more stories when none are open instead of stopping",
    )
    p.add_argument(
        "--max-minutes",
        type=_positive_float,
        default=None,
        help="Stop at the first story boundary after N minutes",
    )


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="twin", description="Twin - your taste, building autonomously"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", help="Twin commands", required=False)
    subparsers.add_parser("init", help="Create your taste profile")
    subparsers.add_parser("scout", help="Read an existing project before planning")
    subparsers.add_parser("plan", help="Plan the next stories into prd.json")
    _add_build_parser(subparsers)
    steer_p = subparsers.add_parser("steer", help="Queue a note for the running build")
    steer_p.add_argument("message", nargs="*", help="Note text (prompted if omitted)")
    return parser


if __name__ == "__main__":
    sys.exit(main())
