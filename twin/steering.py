"""Steering intake: turn a queued steer.md note into ledger and profile changes.

Runs once at the start of every build-loop iteration. The note is sent to
the model together with a compact view of the ledger and the full taste
profile; the reply may add stories, append to the profile, or both.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from twin.config import GlobalConfig, TwinPaths, get_global_config
from twin.errors import LLMError
from twin.llm import call_llm, parse_llm_json
from twin.models import Story
from twin.profile import append_to_twin
from twin.prompts import inject_context, load_prompt
from twin.state import load_ledger_or_empty, save_ledger
from twin.utils import Colors, read_text_if_exists

logger = logging.getLogger(__name__)

LLMFn = Callable[[str, str], str]


@dataclass
class SteeringResult:
    """What one steering pass did.

    Attributes:
        consumed: steer.md had content and was cleared.
        new_stories: Stories appended to the ledger.
        twin_appended: A block was appended to the taste profile.
        error: Why the note was not applied, if it was not.
    """

    consumed: bool = False
    new_stories: List[Story] = field(default_factory=list)
    twin_appended: bool = False
    error: Optional[str] = None


class MalformedSteeringResponse(ValueError):
    """The model reply was not the expected steering JSON."""


def _parse_response(raw: str) -> tuple:
    try:
        data = parse_llm_json(raw)
    except ValueError as e:
        raise MalformedSteeringResponse(str(e)) from e
    if not isinstance(data, dict):
        raise MalformedSteeringResponse("reply is not a JSON object")
    stories = data.get("newStories") or []
    if not isinstance(stories, list) or not all(isinstance(s, dict) for s in stories):
        raise MalformedSteeringResponse("newStories must be a list of objects")
    twin_append = data.get("twinAppend")
    if twin_append is not None and not isinstance(twin_append, str):
        raise MalformedSteeringResponse("twinAppend must be a string or null")
    return stories, (twin_append or "").strip() or None


class SteeringIntake:
    """Consumes steer.md for one project.

    Args:
        paths: Project file layout.
        twin_path: Taste profile to read and append to.
        llm: One-shot model call; defaults to call_llm.
        config: Lock settings for profile appends.
    """

    def __init__(
        self,
        paths: TwinPaths,
        twin_path: Path,
        llm: Optional[LLMFn] = None,
        config: Optional[GlobalConfig] = None,
    ) -> None:
        self.paths = paths
        self.twin_path = twin_path
        self.config = config or get_global_config()
        self.llm = llm or (lambda system, user: call_llm(system, user, self.config))

    def pending_text(self) -> str:
        return (read_text_if_exists(self.paths.steer_file) or "").strip()

    def clear(self) -> None:
        if self.paths.steer_file.exists():
            self.paths.steer_file.write_text("")

    def apply(self) -> SteeringResult:
        """Apply any queued steering note.

        Returns:
            SteeringResult describing what changed.

        Raises:
            LedgerError: If prd.json exists but cannot be read.
        """
        text = self.pending_text()
        if not text:
            return SteeringResult()

        ledger = load_ledger_or_empty(self.paths.prd_file)
        twin_content = read_text_if_exists(self.twin_path) or ""
        next_id = ledger.next_story_id()
        system_prompt = inject_context(load_prompt("steer"), {"next_id": next_id})
        user_message = (
            f"## Steering note\n{text}\n\n"
            f"## Existing stories\n{json.dumps(ledger.summary(), indent=2)}\n\n"
            f"## Next available id\n{next_id}\n\n"
            f"## Taste profile ({self.twin_path.name})\n{twin_content}"
        )

        try:
            raw = self.llm(system_prompt, user_message)
        except LLMError as e:
            # Leave steer.md in place so the next iteration retries.
            logger.warning("Steering model call failed, will retry next cycle: %s", e)
            return SteeringResult(error=str(e))

        try:
            stories, twin_append = _parse_response(raw)
        except MalformedSteeringResponse as e:
            logger.warning("Discarding steering note, unusable model reply: %s", e)
            self.clear()
            return SteeringResult(consumed=True, error=str(e))

        result = SteeringResult(consumed=True)
        if stories:
            result.new_stories = ledger.append_stories(stories)
            save_ledger(ledger, self.paths.prd_file)
        if twin_append:
            append_to_twin(self.twin_path, twin_append, self.config)
            result.twin_appended = True
        self.clear()

        _print_steering(result)
        return result


def _print_steering(result: SteeringResult) -> None:
    print(f"{Colors.MAGENTA}Steering applied{Colors.NC}")
    for story in result.new_stories:
        print(f"  {Colors.GREEN}+ {story.id}{Colors.NC} {story.title}")
    if result.twin_appended:
        print(f"  {Colors.DIM}taste profile updated{Colors.NC}")


__all__ = ["SteeringIntake", "SteeringResult", "MalformedSteeringResponse"]
