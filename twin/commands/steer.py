"""Steer command: queue a note for the build loop."""

from pathlib import Path
from typing import Callable, Optional, Sequence

from twin.config import GlobalConfig, TwinPaths, get_global_config
from twin.lock import RunMarker
from twin.utils import Colors, append_text


def cmd_steer(
    repo_root: Path,
    message: Optional[Sequence[str]] = None,
    config: Optional[GlobalConfig] = None,
    input_fn: Callable[[str], str] = input,
) -> int:
    """Append a steering note to steer.md.

    Notes queue up until the build loop consumes them at the next story
    boundary.

    Args:
        repo_root: Project directory.
        message: Words of the note; prompted for when empty.

    Returns:
        Exit code.
    """
    config = config or get_global_config()
    paths = TwinPaths.from_repo(repo_root, config)

    text = " ".join(message or []).strip()
    if not text:
        text = input_fn("What do you want to tell your twin? ").strip()
    if not text:
        print("No message provided. Nothing written.")
        return 0

    append_text(paths.steer_file, text)

    if RunMarker.is_active(paths.run_marker):
        print(
            f"\n{Colors.GREEN}Steer queued.{Colors.NC} The running build will read "
            "it at the next story boundary.\n"
        )
    else:
        print(
            f"\n{Colors.GREEN}Steer queued.{Colors.NC} No build is running; it will "
            "be applied when `twin build` starts.\n"
        )
    return 0


__all__ = ["cmd_steer"]
