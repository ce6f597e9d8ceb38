"""Cycle controller for `twin build`.

One iteration of the loop:

    interrupt/quota check -> steering -> reload ledger -> select story
        -> (no story: plan or stop) -> deadline check -> synthesis -> build

The controller is single threaded. Everything that talks to the outside
world (agent, planner, steering, synthesis, clock, sleep) is injected so
the loop can be driven deterministically in tests.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, Set

from twin.agent import AgentResult
from twin.config import TwinPaths
from twin.errors import ConfigurationError, LedgerError
from twin.models import STATUS_DONE, Ledger, Story
from twin.prompts import build_agent_prompt
from twin.state import load_ledger, save_ledger
from twin.utils import Colors, append_text, read_text_if_exists, utc_timestamp

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAYS = (10.0, 30.0)


class CycleState(Enum):
    """Where the controller is within an iteration."""

    IDLE = auto()
    STEERING = auto()
    SELECTING = auto()
    BUILDING = auto()
    PLANNING = auto()
    STOPPED = auto()


class StopReason(Enum):
    """Why the loop stopped."""

    COMPLETE = "complete"  # no open stories, not looping
    EXHAUSTED = "exhausted"  # planner had nothing to add
    QUOTA = "quota"
    DEADLINE = "deadline"
    INTERRUPTED = "interrupted"
    CONFIG_ERROR = "config_error"

    @property
    def graceful(self) -> bool:
        return self is not StopReason.CONFIG_ERROR


@dataclass
class BuildOutcome:
    """Result of building one story, retries included."""

    story_id: str
    built: bool
    attempts: int
    exit_code: int
    all_complete: bool = False
    note: Optional[str] = None


@dataclass
class LoopSummary:
    """What a build-loop run accomplished."""

    stop_reason: StopReason
    built: int = 0
    cycles: int = 0
    elapsed_s: float = 0.0
    built_ids: List[str] = field(default_factory=list)
    skipped_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None
    hint: Optional[str] = None


def compose_build_prompt(paths: TwinPaths, twin_path: Path, story: Story) -> str:
    """Build prompt for ``story`` from the current files on disk."""
    return build_agent_prompt(
        story,
        twin_name=twin_path.name,
        twin_content=read_text_if_exists(twin_path) or "",
        prd_content=read_text_if_exists(paths.prd_file) or "",
        progress_content=read_text_if_exists(paths.progress_file),
        memory_content=read_text_if_exists(paths.memory_file),
    )


class BuildLoop:
    """Drives the agent through open stories until a stop condition.

    Args:
        paths: Project file layout.
        twin_path: Taste profile named in build prompts.
        run_agent_fn: Runs the agent on a prompt and returns its result.
        plan_fn: Appends new stories and returns them (empty: nothing to add).
        max_items: Quota of stories to build; None for unbounded.
        loop_mode: Re-plan instead of stopping when no open story is left.
        max_minutes: Wall-clock deadline checked at cycle boundaries.
        steer_fn: Applies queued steering; errors are logged and ignored.
        synthesize_fn: Records why a story is next; best-effort.
        prompt_fn: Builds the agent prompt for a story.
        is_interrupted: True once the user asked the loop to stop.
        retry_delays: Pauses before each retry of a failed build.
        sleep_fn: Sleep, injectable for tests.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        paths: TwinPaths,
        twin_path: Path,
        run_agent_fn: Callable[[str], AgentResult],
        plan_fn: Callable[[], List[Story]],
        max_items: Optional[int] = None,
        loop_mode: bool = False,
        max_minutes: Optional[float] = None,
        steer_fn: Optional[Callable[[], Any]] = None,
        synthesize_fn: Optional[Callable[[Story, Ledger], Any]] = None,
        prompt_fn: Optional[Callable[[Story], str]] = None,
        is_interrupted: Callable[[], bool] = lambda: False,
        retry_delays: Sequence[float] = DEFAULT_RETRY_DELAYS,
        sleep_fn: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.paths = paths
        self.twin_path = twin_path
        self.run_agent_fn = run_agent_fn
        self.plan_fn = plan_fn
        self.max_items = max_items
        self.loop_mode = loop_mode
        self.max_minutes = max_minutes
        self.steer_fn = steer_fn
        self.synthesize_fn = synthesize_fn
        self.prompt_fn = prompt_fn or (
            lambda story: compose_build_prompt(paths, twin_path, story)
        )
        self.is_interrupted = is_interrupted
        self.retry_delays = list(retry_delays)
        self.sleep_fn = sleep_fn
        self.clock = clock

        self.state = CycleState.IDLE
        self._started_at = 0.0
        self._excluded: Set[str] = set()

    def elapsed(self) -> float:
        return self.clock() - self._started_at

    def deadline_passed(self) -> bool:
        if self.max_minutes is None:
            return False
        return self.elapsed() > self.max_minutes * 60

    def select(self, ledger: Ledger) -> Optional[Story]:
        """First story in ledger order that is not done and not yet attempted."""
        for story in ledger.open_stories:
            if story.id not in self._excluded:
                return story
        return None

    def run(self) -> LoopSummary:
        """Run iterations until a stop condition; never raises for config errors."""
        self._started_at = self.clock()
        self._excluded = set()
        summary = LoopSummary(stop_reason=StopReason.COMPLETE)
        try:
            summary.stop_reason = self._run(summary)
        except (ConfigurationError, LedgerError) as e:
            summary.stop_reason = StopReason.CONFIG_ERROR
            summary.error = str(e)
            summary.hint = getattr(e, "hint", None)
        self.state = CycleState.STOPPED
        summary.elapsed_s = self.elapsed()
        return summary

    def _run(self, summary: LoopSummary) -> StopReason:
        while True:
            self.state = CycleState.IDLE
            if self.is_interrupted():
                return StopReason.INTERRUPTED
            if self.max_items is not None and summary.built >= self.max_items:
                return StopReason.QUOTA

            self.state = CycleState.STEERING
            self._steer()

            self.state = CycleState.SELECTING
            ledger = load_ledger(self.paths.prd_file)
            story = self.select(ledger)

            while story is None:
                if not self.loop_mode:
                    return StopReason.COMPLETE
                if self.deadline_passed():
                    return StopReason.DEADLINE
                self.state = CycleState.PLANNING
                summary.cycles += 1
                print(f"{Colors.BLUE}No open stories left, planning more...{Colors.NC}")
                new_stories = self.plan_fn()
                if not new_stories:
                    return StopReason.EXHAUSTED
                for new_story in new_stories:
                    print(f"  {Colors.GREEN}+ {new_story.id}{Colors.NC} {new_story.title}")
                self.state = CycleState.SELECTING
                ledger = load_ledger(self.paths.prd_file)
                story = self.select(ledger)
                if story is None:
                    logger.warning("Planner reported new stories but none are open")
                    return StopReason.EXHAUSTED

            if self.deadline_passed():
                return StopReason.DEADLINE

            self.state = CycleState.BUILDING
            summary.cycles += 1
            self._synthesize(story, ledger)
            outcome = self.build(story)
            if outcome.built:
                summary.built += 1
                summary.built_ids.append(story.id)
            else:
                summary.skipped_ids.append(story.id)

    def _steer(self) -> None:
        if self.steer_fn is None:
            return
        try:
            self.steer_fn()
        except Exception as e:
            logger.warning("Steering failed: %s", e)

    def _synthesize(self, story: Story, ledger: Ledger) -> None:
        if self.synthesize_fn is None:
            return
        try:
            self.synthesize_fn(story, ledger)
        except Exception as e:
            logger.warning("Could not write synthesis for %s: %s", story.id, e)

    def build(self, story: Story) -> BuildOutcome:
        """Build one story with bounded retries.

        An attempt fails when the agent exits non-zero. A zero exit counts as
        built if the ledger now shows the story done or the agent printed the
        story-complete marker; in the latter case the ledger is brought in
        line. Either way the story is not selected again in this run.

        A stop request does not cut the retries short; it is honoured at
        the next iteration boundary.
        """
        self._excluded.add(story.id)
        max_attempts = 1 + len(self.retry_delays)

        attempt = 1
        _print_story_header(story, attempt, max_attempts)
        result = self.run_agent_fn(self.prompt_fn(story))
        while not result.succeeded:
            print(
                f"{Colors.RED}Agent exited with code {result.exit_code}{Colors.NC}"
            )
            if attempt >= max_attempts:
                note = (
                    f"Build failed after {attempt} attempts (last exit code "
                    f"{result.exit_code}). Left open and skipped for the rest of "
                    "this run."
                )
                self._note_progress(story, note)
                return BuildOutcome(story.id, False, attempt, result.exit_code, note=note)
            delay = self.retry_delays[attempt - 1]
            print(f"{Colors.YELLOW}Retrying in {delay:g}s...{Colors.NC}")
            self.sleep_fn(delay)
            attempt += 1
            _print_story_header(story, attempt, max_attempts)
            result = self.run_agent_fn(self.prompt_fn(story))

        if result.all_complete:
            print(f"{Colors.GREEN}Agent reports every story is done.{Colors.NC}")

        ledger = load_ledger(self.paths.prd_file)
        current = ledger.get(story.id)
        if current is not None and not current.is_done and result.story_complete:
            current.advance(STATUS_DONE)
            save_ledger(ledger, self.paths.prd_file)
        if (current is not None and current.is_done) or result.story_complete:
            print(f"{Colors.GREEN}✓ {story.id} complete{Colors.NC}")
            return BuildOutcome(
                story.id, True, attempt, 0, all_complete=result.all_complete
            )

        note = (
            "Agent finished without marking the story done or signalling "
            "completion. Left open and skipped for the rest of this run."
        )
        print(f"{Colors.YELLOW}{story.id} not completed{Colors.NC}")
        self._note_progress(story, note)
        return BuildOutcome(story.id, False, attempt, 0, note=note)

    def _note_progress(self, story: Story, note: str) -> None:
        append_text(
            self.paths.progress_file,
            f"## {story.id}: {story.title} ({utc_timestamp()})\n\n{note}\n",
        )


def _print_story_header(story: Story, attempt: int, max_attempts: int) -> None:
    print()
    print(f"{Colors.BLUE}{'━' * 40}{Colors.NC}")
    label = f"{story.id}: {story.title}"
    if attempt > 1:
        label += f" (attempt {attempt}/{max_attempts})"
    print(f"{Colors.BLUE}{label}{Colors.NC}")
    print(f"{Colors.BLUE}{'━' * 40}{Colors.NC}")


__all__ = [
    "CycleState",
    "StopReason",
    "BuildOutcome",
    "LoopSummary",
    "BuildLoop",
    "compose_build_prompt",
    "DEFAULT_RETRY_DELAYS",
]
