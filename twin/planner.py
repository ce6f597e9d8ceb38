"""Planner: ask the model for the next batch of stories and append them."""

import logging
import time
from pathlib import Path
from typing import Callable, List, Optional

from twin.config import GlobalConfig, TwinPaths, get_global_config
from twin.errors import LedgerError, LLMError
from twin.llm import call_llm, call_llm_with_retries, parse_llm_json
from twin.models import Story
from twin.profile import find_twin_path
from twin.prompts import inject_context, load_prompt
from twin.state import load_ledger_or_empty, save_ledger
from twin.utils import Colors, read_text_if_exists

logger = logging.getLogger(__name__)


def build_plan_request(
    twin_content: str,
    product: str,
    status: Optional[str] = None,
    memory: Optional[str] = None,
    existing_prd: Optional[str] = None,
) -> str:
    """Assemble the planner's user message from the project documents."""
    message = f"## Taste profile\n{twin_content}\n\n## product.md\n{product}"
    if status:
        message += f"\n\n## status.md\n{status}"
    if memory:
        message += f"\n\n## project-memory.md\n{memory}"
    if existing_prd:
        message += (
            "\n\n## Existing prd.json (do NOT duplicate these stories)\n"
            f"{existing_prd}"
        )
    return message + "\n\nGenerate the next 3-5 capabilities as JSON."


def run_plan(
    paths: TwinPaths,
    twin_path: Optional[Path] = None,
    llm: Optional[Callable[[str, str], str]] = None,
    config: Optional[GlobalConfig] = None,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> List[Story]:
    """Append the next batch of stories to prd.json.

    Creates prd.json if it does not exist yet. Nothing is written when the
    model cannot be reached or its reply cannot be parsed.

    Args:
        paths: Project file layout.
        twin_path: Taste profile; looked up when omitted.
        llm: One-shot model call; defaults to call_llm.
        config: Retry settings.
        sleep_fn: Sleep used between retries.

    Returns:
        The newly appended stories, or an empty list when there is nothing
        to add (or planning was not possible).
    """
    config = config or get_global_config()
    llm = llm or (lambda system, user: call_llm(system, user, config))

    twin_path = twin_path or find_twin_path(paths.repo_root, paths.twin_home)
    if twin_path is None:
        logger.warning("Cannot plan without a taste profile")
        return []
    product = read_text_if_exists(paths.product_file)
    if not product:
        logger.warning("Cannot plan without %s", paths.product_file.name)
        return []

    try:
        ledger = load_ledger_or_empty(paths.prd_file)
    except LedgerError as e:
        logger.warning("Cannot plan on top of an unreadable ledger: %s", e)
        return []

    existing_prd = read_text_if_exists(paths.prd_file)
    system_prompt = inject_context(
        load_prompt("plan"), {"next_id": ledger.next_story_id()}
    )
    user_message = build_plan_request(
        read_text_if_exists(twin_path) or "",
        product,
        status=read_text_if_exists(paths.status_file),
        memory=read_text_if_exists(paths.memory_file),
        existing_prd=existing_prd,
    )

    try:
        raw = call_llm_with_retries(
            system_prompt,
            user_message,
            retries=config.plan_retries,
            delay_s=config.plan_retry_delay_s,
            llm=llm,
            sleep_fn=sleep_fn,
        )
    except LLMError as e:
        print(
            f"{Colors.RED}Planning failed after {config.plan_retries + 1} "
            f"attempts: {e}{Colors.NC}"
        )
        return []

    try:
        data = parse_llm_json(raw)
    except ValueError as e:
        logger.warning("Planner reply is not JSON: %s", e)
        return []
    if not isinstance(data, dict):
        logger.warning("Planner reply is not a JSON object")
        return []

    incoming = [s for s in (data.get("userStories") or []) if isinstance(s, dict)]
    if not ledger.project:
        ledger.project = str(data.get("project") or paths.repo_root.resolve().name)
    if not ledger.description and data.get("description"):
        ledger.description = str(data["description"])

    if not incoming:
        if not paths.prd_file.exists():
            save_ledger(ledger, paths.prd_file)
        return []

    added = ledger.append_stories(incoming)
    save_ledger(ledger, paths.prd_file)
    logger.info("Planner appended %d stories", len(added))
    return added


__all__ = ["build_plan_request", "run_plan"]
