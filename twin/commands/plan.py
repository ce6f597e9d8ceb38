"""Plan command: bootstrap product context and ask for the next stories."""

from pathlib import Path
from typing import Callable, Optional

from twin.config import GlobalConfig, TwinPaths, get_global_config
from twin.planner import run_plan
from twin.profile import require_twin_path
from twin.utils import Colors


def bootstrap_product(product_file: Path, input_fn: Callable[[str], str] = input) -> str:
    """Ask two questions and write a minimal product.md.

    Returns:
        The written content.
    """
    print("\nNo product.md found. Let's set up your project context.\n")
    what = input_fn("What are you building? ").strip()
    who = input_fn("Who is it for? ").strip()
    content = f"# Product\n\n## What\n{what}\n\n## Who\n{who}\n"
    product_file.write_text(content)
    print(f"\nWrote {product_file}")
    return content


def cmd_plan(
    repo_root: Path,
    config: Optional[GlobalConfig] = None,
    input_fn: Callable[[str], str] = input,
    llm: Optional[Callable[[str, str], str]] = None,
) -> int:
    """Plan the next 3-5 stories and append them to prd.json.

    Returns:
        Exit code.

    Raises:
        TasteProfileNotFoundError: No taste profile to plan with.
    """
    config = config or get_global_config()
    paths = TwinPaths.from_repo(repo_root, config)

    twin_path = require_twin_path(paths.repo_root, paths.twin_home)
    print(f"Using {twin_path}\n")

    if not paths.product_file.exists() or not paths.product_file.read_text().strip():
        bootstrap_product(paths.product_file, input_fn)

    print("--- twin plan ---")
    print("Your twin is deciding what to build next...\n")

    new_stories = run_plan(paths, twin_path, llm=llm, config=config)
    if not new_stories:
        print("Your twin has nothing to add right now.\n")
        return 0

    for story in new_stories:
        print(f"{Colors.GREEN}{story.id}{Colors.NC}. {story.title}")
        print(f"   {story.description}")
        for criterion in story.acceptance_criteria:
            print(f"   - {criterion}")
        print()

    print("---")
    print(f"Wrote {paths.prd_file}")
    print("\nNext step, let your twin build it:")
    print(f"  {Colors.CYAN}twin build{Colors.NC}")
    return 0


__all__ = ["cmd_plan", "bootstrap_product"]
