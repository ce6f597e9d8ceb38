"""One-shot model calls through the agent CLI in print mode."""

import json
import logging
import re
import subprocess
import time
from typing import Any, Callable, Optional

from twin.config import GlobalConfig, get_global_config
from twin.errors import AgentNotFoundError, LLMError

logger = logging.getLogger(__name__)

_FENCE_OPEN_RE = re.compile(r"^```(?:json)?\s*\n?")
_FENCE_CLOSE_RE = re.compile(r"\n?```\s*$")


def call_llm(
    system_prompt: str, user_message: str, config: Optional[GlobalConfig] = None
) -> str:
    """Run a single prompt/response exchange.

    The system prompt and user message are joined by a blank line and sent
    on stdin.

    Args:
        system_prompt: Instructions for the model.
        user_message: The request body.
        config: Supplies the LLM command and timeout.

    Returns:
        The model's reply, stripped.

    Raises:
        AgentNotFoundError: If the LLM command cannot be launched.
        LLMError: On non-zero exit, timeout, or empty output.
    """
    config = config or get_global_config()
    argv = config.llm_argv
    try:
        result = subprocess.run(
            argv,
            input=f"{system_prompt}\n\n{user_message}",
            capture_output=True,
            text=True,
            timeout=config.llm_timeout_s,
        )
    except (FileNotFoundError, PermissionError) as e:
        raise AgentNotFoundError(
            f"Cannot run {argv[0]!r}: {e}",
            hint="Install the Claude CLI or set TWIN_LLM_COMMAND.",
        ) from e
    except subprocess.TimeoutExpired as e:
        raise LLMError(f"{argv[0]} timed out after {config.llm_timeout_s}s") from e

    if result.returncode != 0:
        stderr = (result.stderr or "").strip().splitlines()
        detail = stderr[-1] if stderr else "no output"
        raise LLMError(f"{argv[0]} exited with code {result.returncode}: {detail}")
    output = (result.stdout or "").strip()
    if not output:
        raise LLMError(f"{argv[0]} returned empty output")
    return output


def call_llm_with_retries(
    system_prompt: str,
    user_message: str,
    retries: int,
    delay_s: float,
    llm: Callable[[str, str], str] = call_llm,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> str:
    """Call the model, retrying transient failures.

    Args:
        retries: Extra attempts after the first.
        delay_s: Pause between attempts.

    Raises:
        LLMError: The last failure once retries are exhausted.
    """
    attempt = 0
    while True:
        try:
            return llm(system_prompt, user_message)
        except LLMError as e:
            if attempt >= retries:
                raise
            attempt += 1
            logger.warning(
                "Model call failed (%s), retry %d/%d in %ss", e, attempt, retries, delay_s
            )
            sleep_fn(delay_s)


def strip_code_fences(raw: str) -> str:
    """Remove a surrounding ```json ... ``` fence if present."""
    cleaned = raw.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_OPEN_RE.sub("", cleaned)
        cleaned = _FENCE_CLOSE_RE.sub("", cleaned)
    return cleaned.strip()


def _find_last_json_object(text: str) -> Optional[dict]:
    """Find the last valid JSON object in text."""
    pos = len(text)
    while pos > 0:
        pos = text.rfind("}", 0, pos)
        if pos == -1:
            break
        depth = 0
        for i in range(pos, -1, -1):
            if text[i] == "}":
                depth += 1
            elif text[i] == "{":
                depth -= 1
            if depth == 0:
                try:
                    obj = json.loads(text[i : pos + 1])
                    if isinstance(obj, dict):
                        return obj
                except json.JSONDecodeError:
                    pass
                break
    return None


def parse_llm_json(raw: str) -> Any:
    """Parse a model reply as JSON.

    Code fences are stripped first. If the reply still is not JSON (e.g. a
    sentence of preamble), the last complete JSON object in it is used.

    Raises:
        ValueError: If no JSON can be recovered.
    """
    cleaned = strip_code_fences(raw)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        obj = _find_last_json_object(cleaned)
        if obj is None:
            raise ValueError(f"model reply is not JSON: {cleaned[:80]!r}") from None
        return obj


__all__ = [
    "call_llm",
    "call_llm_with_retries",
    "strip_code_fences",
    "parse_llm_json",
]
