"""ANSI color utilities and small file helpers."""

import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class Colors:
    """ANSI color codes for terminal output."""

    RED = "\033[0;31m"
    GREEN = "\033[0;32m"
    YELLOW = "\033[1;33m"
    BLUE = "\033[0;34m"
    MAGENTA = "\033[0;35m"
    CYAN = "\033[0;36m"
    NC = "\033[0m"  # No Color
    DIM = "\033[2m"
    BOLD = "\033[1m"


def format_duration(seconds: float) -> str:
    """Format a duration as ``1h 02m 03s`` / ``4m 05s`` / ``6s``."""
    total = int(seconds)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes:02d}m {secs:02d}s"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"


def slugify(text: str, fallback: str = "twin") -> str:
    """Lowercase a name and collapse anything non-alphanumeric into dashes."""
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug or fallback


def read_text_if_exists(path: Path) -> Optional[str]:
    """Return the file's text, or None when it does not exist."""
    try:
        return path.read_text()
    except FileNotFoundError:
        return None


def append_text(path: Path, text: str) -> None:
    """Append a block of text to a file, creating it if needed.

    The block is separated from existing content by a blank line and always
    ends with a newline.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    existing = read_text_if_exists(path) or ""
    prefix = ""
    if existing and not existing.endswith("\n\n"):
        prefix = "\n" if existing.endswith("\n") else "\n\n"
    block = text if text.endswith("\n") else text + "\n"
    with open(path, "a") as f:
        f.write(prefix + block)


def write_atomic(path: Path, text: str) -> None:
    """Write a file via temp file + rename so readers never see a partial write."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text(text)
    os.replace(str(tmp_path), str(path))


def utc_timestamp() -> str:
    """Current UTC time as ``YYYY-MM-DD HH:MM``, for log headings."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M")
