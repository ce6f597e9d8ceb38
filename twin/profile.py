"""Taste profile lookup and mutation.

The taste profile is a free-form ``*.twin`` file describing how the user
builds things. A global profile in ``~/.twin/`` wins over one in the
project directory.
"""

import logging
from pathlib import Path
from typing import Callable, Optional

from twin.config import GlobalConfig, get_global_config
from twin.errors import TasteProfileNotFoundError
from twin.lock import TwinLock
from twin.utils import read_text_if_exists

logger = logging.getLogger(__name__)

TWIN_SUFFIX = ".twin"


def _first_twin_file(directory: Path) -> Optional[Path]:
    if not directory.is_dir():
        return None
    candidates = sorted(
        p for p in directory.iterdir() if p.is_file() and p.name.endswith(TWIN_SUFFIX)
    )
    return candidates[0] if candidates else None


def find_twin_path(project_dir: Path, twin_home: Optional[Path] = None) -> Optional[Path]:
    """Locate the taste profile.

    Args:
        project_dir: Project directory searched after the global one.
        twin_home: Global profile directory; defaults to the configured one.

    Returns:
        Path to the first ``*.twin`` file (alphabetical) in the global
        directory, else in the project, else None.
    """
    if twin_home is None:
        twin_home = get_global_config().twin_home_path
    return _first_twin_file(twin_home) or _first_twin_file(project_dir)


def require_twin_path(project_dir: Path, twin_home: Optional[Path] = None) -> Path:
    """Like find_twin_path but raises when no profile exists."""
    path = find_twin_path(project_dir, twin_home)
    if path is None:
        raise TasteProfileNotFoundError(
            "No taste profile (*.twin) found",
            hint="Run `twin init` to create one.",
        )
    return path


def append_to_twin(
    twin_path: Path,
    block: str,
    config: Optional[GlobalConfig] = None,
    sleep_fn: Optional[Callable[[float], None]] = None,
) -> None:
    """Append a block to the taste profile under the profile lock.

    The profile is re-read after the lock is taken so a concurrent writer's
    change is not lost.

    Args:
        twin_path: Profile to mutate.
        block: Text to append after a blank line.
        config: Supplies lock retry settings.
        sleep_fn: Override for the lock's retry sleep.
    """
    config = config or get_global_config()
    lock_kwargs = {}
    if sleep_fn is not None:
        lock_kwargs["sleep_fn"] = sleep_fn
    with TwinLock(
        twin_path,
        retries=config.lock_retries,
        retry_delay_s=config.lock_retry_delay_s,
        **lock_kwargs,
    ):
        current = read_text_if_exists(twin_path) or ""
        updated = current.rstrip("\n") + "\n\n" + block.strip("\n") + "\n"
        twin_path.write_text(updated.lstrip("\n"))
    logger.info("Appended %d chars to %s", len(block), twin_path)


__all__ = ["TWIN_SUFFIX", "find_twin_path", "require_twin_path", "append_to_twin"]
