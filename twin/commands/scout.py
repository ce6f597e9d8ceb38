"""Scout command: read an existing project and write its memory and product docs."""

import logging
import os
import re
import subprocess
import time
from pathlib import Path
from typing import Callable, Optional

from twin.config import GlobalConfig, TwinPaths, get_global_config
from twin.errors import LLMError
from twin.llm import call_llm, call_llm_with_retries
from twin.prompts import load_prompt
from twin.utils import Colors, read_text_if_exists

logger = logging.getLogger(__name__)

SKIP_DIRS = {
    "node_modules",
    ".git",
    "dist",
    "build",
    "coverage",
    ".next",
    ".cache",
    "vendor",
    ".turbo",
    "out",
    "__pycache__",
    ".venv",
    "venv",
}

# Never read credential or secret files, regardless of project type.
CREDENTIAL_PATTERNS = [
    re.compile(r"^\.env(\..*)?$"),
    re.compile(r"\.pem$"),
    re.compile(r"\.key$"),
    re.compile(r"\.p12$"),
    re.compile(r"\.pfx$"),
    re.compile(r"\.keystore$"),
    re.compile(r"\.secret$"),
]

BINARY_EXTENSIONS = {
    ".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".ico",
    ".pdf", ".zip", ".tar", ".gz", ".bz2", ".7z",
    ".wasm", ".ttf", ".woff", ".woff2", ".eot", ".otf",
    ".mp4", ".mp3", ".mov", ".avi", ".wav",
    ".exe", ".dll", ".so", ".dylib", ".bin", ".pyc",
}

FILE_CHAR_LIMIT = 3000
TREE_MAX_DEPTH = 3


def git_log(repo_root: Path) -> Optional[str]:
    """Last 50 commits with file stats, or None outside a git repo."""
    try:
        result = subprocess.run(
            ["git", "log", "--oneline", "--stat", "-50"],
            cwd=repo_root,
            capture_output=True,
            text=True,
            timeout=30,
        )
    except (OSError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def build_tree(directory: Path, depth: int = 0) -> str:
    """Indented directory listing, skipping dotfiles and build output."""
    if depth > TREE_MAX_DEPTH:
        return ""
    try:
        entries = sorted(os.scandir(directory), key=lambda e: e.name)
    except OSError:
        return ""
    output = ""
    indent = "  " * depth
    for entry in entries:
        if entry.name.startswith("."):
            continue
        if entry.is_dir():
            if entry.name in SKIP_DIRS:
                continue
            output += f"{indent}{entry.name}/\n"
            output += build_tree(Path(entry.path), depth + 1)
        else:
            output += f"{indent}{entry.name}\n"
    return output


def is_skipped_file(name: str) -> bool:
    if any(p.search(name) for p in CREDENTIAL_PATTERNS):
        return True
    return Path(name).suffix.lower() in BINARY_EXTENSIONS


def read_project_files(repo_root: Path) -> str:
    """Top-level files, each truncated, as Markdown sections."""
    sections = []
    for path in sorted(repo_root.iterdir()):
        if not path.is_file() or is_skipped_file(path.name):
            continue
        try:
            content = path.read_text(errors="replace")
        except OSError:
            continue
        if not content:
            continue
        if len(content) > FILE_CHAR_LIMIT:
            content = content[:FILE_CHAR_LIMIT] + "\n... (truncated)"
        sections.append(f"### {path.name}\n{content}")
    return "\n\n".join(sections)


def gather_project_data(repo_root: Path) -> str:
    """Everything the scout prompts see about the project."""
    parts = []
    log = git_log(repo_root)
    if log:
        parts.append(f"## Git history\n{log}")
    tree = build_tree(repo_root)
    if tree:
        parts.append(f"## Directory structure\n{tree}")
    files = read_project_files(repo_root)
    if files:
        parts.append(f"## Project files\n{files}")
    return "\n\n".join(parts)


def cmd_scout(
    repo_root: Path,
    config: Optional[GlobalConfig] = None,
    llm: Optional[Callable[[str, str], str]] = None,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> int:
    """Write project-memory.md and product.md for an existing codebase.

    Returns:
        Exit code: 1 if the project memory could not be produced.
    """
    config = config or get_global_config()
    llm = llm or (lambda system, user: call_llm(system, user, config))
    paths = TwinPaths.from_repo(repo_root, config)

    if not os.access(paths.repo_root, os.W_OK):
        print(f"{Colors.RED}Cannot write to {paths.repo_root}.{Colors.NC}")
        return 1

    print(f"{Colors.DIM}Scouting project...{Colors.NC}")
    project_data = gather_project_data(paths.repo_root)
    if not project_data:
        print(f"{Colors.YELLOW}Nothing to scout here.{Colors.NC}")
        return 1

    print(f"{Colors.DIM}Synthesizing project memory...{Colors.NC}")
    try:
        memory = call_llm_with_retries(
            load_prompt("memory"),
            project_data + "\n\nReturn the project memory now.",
            retries=config.plan_retries,
            delay_s=config.plan_retry_delay_s,
            llm=llm,
            sleep_fn=sleep_fn,
        )
    except LLMError as e:
        print(
            f"{Colors.RED}Scout failed after {config.plan_retries + 1} attempts: "
            f"{e}{Colors.NC}"
        )
        return 1
    paths.memory_file.write_text(memory.strip() + "\n")

    print(f"{Colors.DIM}Deriving product context...{Colors.NC}")
    product: Optional[str]
    try:
        product = call_llm_with_retries(
            load_prompt("product"),
            project_data,
            retries=config.plan_retries,
            delay_s=config.plan_retry_delay_s,
            llm=llm,
            sleep_fn=sleep_fn,
        )
    except LLMError as e:
        logger.warning("Could not derive product.md: %s", e)
        product = None
    if product:
        paths.product_file.write_text(product.strip() + "\n")

    print(f"\n{Colors.DIM}{'─' * 60}{Colors.NC}")
    print(f"{Colors.BOLD}Scout complete{Colors.NC}")
    print(f"  {paths.memory_file.name} written")
    if product:
        print(f"  {paths.product_file.name} written; twin plan will skip setup questions")
    else:
        print("  product.md not derived; twin plan will ask setup questions")
    print("  Run `twin plan` to generate stories.")
    return 0


__all__ = [
    "cmd_scout",
    "gather_project_data",
    "read_project_files",
    "build_tree",
    "git_log",
    "is_skipped_file",
]
