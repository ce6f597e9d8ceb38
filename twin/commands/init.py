"""Init command: interview the user and generate their taste profile."""

from typing import Callable, Optional

from twin.config import GlobalConfig, get_global_config
from twin.errors import LLMError
from twin.llm import call_llm
from twin.prompts import inject_context, load_prompt
from twin.utils import Colors, slugify

QUESTIONS = [
    "When you start something new, do you plan first or build first?",
    "Do you ship something ugly that works, or wait until it's polished?",
    "How do you know when something is done?",
    "Describe something you built or created that you're proud of. What made it good?",
    "What do you believe about building things that most people would disagree with?",
]


def cmd_init(
    config: Optional[GlobalConfig] = None,
    input_fn: Callable[[str], str] = input,
    llm: Optional[Callable[[str, str], str]] = None,
) -> int:
    """Run the interview and write ``<twin_home>/<name>.twin``.

    Returns:
        Exit code.
    """
    config = config or get_global_config()
    llm = llm or (lambda system, user: call_llm(system, user, config))

    print("\n--- twin init ---")
    print("Answer a few questions. Say as much or as little as you want.")
    print("Your answers will be used to generate your taste profile.\n")

    name = input_fn("What should we call you? (First name is fine.) ").strip()
    twin_path = config.twin_home_path / f"{slugify(name)}.twin"
    if twin_path.exists():
        answer = input_fn(f"{twin_path} already exists. Overwrite? [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            print("Keeping the existing profile.")
            return 0

    answers = []
    for question in QUESTIONS:
        answers.append(f"Q: {question}\nA: {input_fn(question + ' ').strip()}")

    print(f"\nGenerating {twin_path.name}...\n")
    system_prompt = inject_context(load_prompt("twin"), {"name": name or "Anonymous"})
    try:
        content = llm(
            system_prompt,
            "Here are the interview answers. Generate the taste profile.\n\n"
            + "\n\n".join(answers),
        )
    except LLMError as e:
        print(f"{Colors.RED}Could not generate the profile: {e}{Colors.NC}")
        return 1

    twin_path.parent.mkdir(parents=True, exist_ok=True)
    twin_path.write_text(content.strip() + "\n")
    print(f"{Colors.GREEN}Done!{Colors.NC} Your taste profile is at: {twin_path}")
    print("Every project you build with twin will use it.")
    return 0


__all__ = ["QUESTIONS", "cmd_init"]
