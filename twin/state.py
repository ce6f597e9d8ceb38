"""Ledger persistence for prd.json.

The ledger is re-read from disk on every load; the agent process edits
the same file between builds, so nothing here caches.
"""

import json
import logging
from pathlib import Path

from twin.errors import LedgerError, LedgerNotFoundError
from twin.models import Ledger
from twin.utils import write_atomic

logger = logging.getLogger(__name__)


def load_ledger(path: Path) -> Ledger:
    """Load the ledger from prd.json.

    Args:
        path: Path to prd.json.

    Returns:
        Freshly parsed Ledger.

    Raises:
        LedgerNotFoundError: If the file does not exist.
        LedgerError: If the file is not a valid ledger document.
    """
    try:
        text = path.read_text()
    except FileNotFoundError:
        raise LedgerNotFoundError(
            f"No ledger at {path}", hint="Run `twin plan` to create one."
        ) from None
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise LedgerError(f"{path} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise LedgerError(f"{path} must contain a JSON object")
    return Ledger.from_dict(data)


def load_ledger_or_empty(path: Path) -> Ledger:
    """Load the ledger, or return an empty one if prd.json does not exist yet."""
    if not path.exists():
        return Ledger()
    return load_ledger(path)


def save_ledger(ledger: Ledger, path: Path) -> None:
    """Save the whole ledger to prd.json.

    Pretty-printed with a 2-space indent and a trailing newline. Uses atomic
    write (write to temp, then rename) so the agent never reads a
    half-written file.

    Args:
        ledger: Ledger to save.
        path: Path to prd.json.
    """
    write_atomic(path, json.dumps(ledger.to_dict(), indent=2) + "\n")
    logger.debug("saved %d stories to %s", len(ledger.stories), path)


__all__ = ["load_ledger", "load_ledger_or_empty", "save_ledger"]
