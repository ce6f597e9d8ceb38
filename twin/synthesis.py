"""Priority-justification log written before each build."""

import logging
from pathlib import Path
from typing import Callable, Optional

from twin.config import GlobalConfig, get_global_config
from twin.llm import call_llm
from twin.models import Story
from twin.prompts import load_prompt
from twin.utils import append_text, read_text_if_exists, utc_timestamp

logger = logging.getLogger(__name__)


def synthesize(
    story: Story,
    synthesis_file: Path,
    twin_path: Path,
    done_titles: Optional[list] = None,
    llm: Optional[Callable[[str, str], str]] = None,
    config: Optional[GlobalConfig] = None,
) -> str:
    """Explain why ``story`` is next and append it to synthesis.md.

    Returns:
        The paragraph that was written.
    """
    config = config or get_global_config()
    llm = llm or (lambda system, user: call_llm(system, user, config))
    done = "\n".join(f"- {t}" for t in (done_titles or [])) or "- (nothing yet)"
    user_message = (
        f"## Next story\n{story.id}: {story.title}\n{story.description}\n\n"
        f"## Already done\n{done}\n\n"
        f"## Taste profile\n{read_text_if_exists(twin_path) or ''}"
    )
    paragraph = llm(load_prompt("synthesis"), user_message).strip()
    append_text(
        synthesis_file,
        f"## {story.id}: {story.title} ({utc_timestamp()})\n\n{paragraph}\n",
    )
    logger.debug("Synthesis for %s appended to %s", story.id, synthesis_file)
    return paragraph


__all__ = ["synthesize"]
