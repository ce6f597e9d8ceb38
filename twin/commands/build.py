"""Build command: run the cycle controller against the current project."""

import logging
import shutil
from pathlib import Path
from typing import Optional, Tuple

from twin.agent import run_agent
from twin.config import GlobalConfig, TwinPaths, get_global_config
from twin.controller import BuildLoop, LoopSummary, StopReason
from twin.lock import InterruptHandler, RunMarker
from twin.planner import run_plan
from twin.profile import require_twin_path
from twin.steering import SteeringIntake
from twin.synthesis import synthesize
from twin.utils import Colors, format_duration

logger = logging.getLogger(__name__)


def _check_agent_available(config: GlobalConfig) -> Tuple[bool, str]:
    """Check that the agent executable can be found.

    Returns:
        Tuple of (is_available, error_message).
    """
    argv = config.agent_argv
    if not argv:
        return False, "agent_command is empty"
    if shutil.which(argv[0]) is None:
        return False, (
            f"{argv[0]} not found. Install the Claude CLI "
            "(npm install -g @anthropic-ai/claude-code) or set TWIN_AGENT_COMMAND."
        )
    return True, ""


def _next_command(summary: LoopSummary) -> Optional[str]:
    return {
        StopReason.COMPLETE: "twin plan   (or `twin build --loop` to keep going)",
        StopReason.EXHAUSTED: 'twin steer "what to build next"',
        StopReason.QUOTA: "twin build",
        StopReason.DEADLINE: "twin build --max-minutes <N>",
        StopReason.INTERRUPTED: "twin build",
    }.get(summary.stop_reason)


def _print_final_report(summary: LoopSummary) -> None:
    """Print the end-of-run summary block."""
    print()
    _exit_colors = {
        StopReason.COMPLETE: Colors.GREEN,
        StopReason.EXHAUSTED: Colors.GREEN,
        StopReason.QUOTA: Colors.YELLOW,
        StopReason.DEADLINE: Colors.YELLOW,
        StopReason.INTERRUPTED: Colors.YELLOW,
        StopReason.CONFIG_ERROR: Colors.RED,
    }
    _exit_labels = {
        StopReason.COMPLETE: "ALL STORIES DONE",
        StopReason.EXHAUSTED: "NOTHING LEFT TO PLAN",
        StopReason.QUOTA: "BUILD QUOTA REACHED",
        StopReason.DEADLINE: "TIME LIMIT REACHED",
        StopReason.INTERRUPTED: "INTERRUPTED BY USER",
        StopReason.CONFIG_ERROR: "STOPPED: CONFIGURATION ERROR",
    }
    color = _exit_colors.get(summary.stop_reason, Colors.BLUE)
    label = _exit_labels.get(summary.stop_reason, summary.stop_reason.value.upper())
    print(f"{color}{'━' * 40}{Colors.NC}")
    print(f"{color}{label}{Colors.NC}")
    print(f"Stories built:  {summary.built}")
    print(f"Cycles:         {summary.cycles}")
    print(f"Wall time:      {format_duration(summary.elapsed_s)}")
    if summary.skipped_ids:
        print(f"Skipped:        {', '.join(summary.skipped_ids)}")
    if summary.error:
        print(f"{Colors.RED}{summary.error}{Colors.NC}")
        if summary.hint:
            print(f"{Colors.DIM}{summary.hint}{Colors.NC}")
    next_command = _next_command(summary)
    if next_command:
        print(f"\nNext: {Colors.CYAN}{next_command}{Colors.NC}")
    print(f"{color}{'━' * 40}{Colors.NC}")


def cmd_build(
    repo_root: Path,
    max_items: Optional[int] = None,
    loop_mode: bool = False,
    max_minutes: Optional[float] = None,
    config: Optional[GlobalConfig] = None,
) -> int:
    """Run the build loop.

    Args:
        repo_root: Project directory.
        max_items: Stories to build before stopping. Defaults to the
            configured quota without --loop and to unbounded with it.
        loop_mode: Plan more stories when the ledger runs dry.
        max_minutes: Stop at the first cycle boundary past this many minutes.
        config: Global configuration; defaults to the singleton.

    Returns:
        Exit code: 0 for any graceful stop, 1 for configuration errors.

    Raises:
        TasteProfileNotFoundError: No *.twin profile in the project or twin home.
    """
    config = config or get_global_config()
    paths = TwinPaths.from_repo(repo_root, config)

    if not paths.prd_file.exists():
        print(f"{Colors.RED}No prd.json found in {paths.repo_root}.{Colors.NC}")
        print("Run `twin plan` first.")
        return 1

    twin_path = require_twin_path(paths.repo_root, paths.twin_home)

    available, error = _check_agent_available(config)
    if not available:
        print(f"{Colors.RED}{error}{Colors.NC}")
        return 1

    if max_items is None and not loop_mode:
        max_items = config.default_max_items

    print(f"{Colors.CYAN}Taste profile:{Colors.NC} {twin_path}")
    quota = "unbounded" if max_items is None else str(max_items)
    print(f"{Colors.CYAN}Quota:{Colors.NC} {quota}" + ("  (loop)" if loop_mode else ""))
    if max_minutes is not None:
        print(f"{Colors.CYAN}Time limit:{Colors.NC} {max_minutes:g} min")

    marker = RunMarker(paths.run_marker)
    with marker:
        interrupts = InterruptHandler(marker)
        intake = SteeringIntake(paths, twin_path, config=config)
        loop = BuildLoop(
            paths,
            twin_path,
            run_agent_fn=lambda prompt: run_agent(
                prompt, paths.repo_root, config, on_spawn=interrupts.set_child
            ),
            plan_fn=lambda: run_plan(paths, twin_path, config=config),
            max_items=max_items,
            loop_mode=loop_mode,
            max_minutes=max_minutes,
            steer_fn=intake.apply,
            synthesize_fn=lambda story, ledger: synthesize(
                story,
                paths.synthesis_file,
                twin_path,
                done_titles=[s.title for s in ledger.stories if s.is_done],
                config=config,
            ),
            is_interrupted=interrupts.is_requested,
            retry_delays=config.retry_delays_s,
        )
        with interrupts:
            summary = loop.run()

    _print_final_report(summary)
    logger.info(
        "build stopped: %s built=%d cycles=%d",
        summary.stop_reason.value,
        summary.built,
        summary.cycles,
    )
    return 0 if summary.stop_reason.graceful else 1


__all__ = ["cmd_build"]
