"""Pytest fixtures for twin tests."""

import json
import re
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

import twin.config
from twin.agent import ALL_COMPLETE, STORY_COMPLETE, AgentResult
from twin.config import GlobalConfig, TwinPaths
from twin.errors import LLMError
from twin.models import STATUS_DONE, Ledger, Story
from twin.state import load_ledger, save_ledger

TWIN_TEXT = "# Twin: Sam\n\n## Execution Bias\n- You ship small and often.\n"


def make_story(number: int, status: str = "open", **kwargs: Any) -> Dict[str, Any]:
    """Raw prd.json story dict."""
    d = {
        "id": f"US-{number:03d}",
        "title": kwargs.pop("title", f"Story {number}"),
        "description": f"As a user, I can do thing {number} so that it helps.",
        "acceptanceCriteria": [f"criterion {number}"],
        "status": status,
    }
    if status == STATUS_DONE:
        d["completedAt"] = "2026-01-01T00:00:00Z"
    d.update(kwargs)
    return d


def write_prd(path: Path, stories: List[Dict[str, Any]], project: str = "demo") -> None:
    doc = {"project": project, "description": "A demo project", "userStories": stories}
    path.write_text(json.dumps(doc, indent=2) + "\n")


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Keep tests away from the real home directory and TWIN_* settings."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    for key in ("TWIN_PROFILE", "TWIN_AGENT_COMMAND", "TWIN_LLM_COMMAND", "TWIN_HOME", "TWIN_LOG_LEVEL"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(twin.config, "_global_config", None)
    yield home


@pytest.fixture
def config(tmp_path: Path) -> GlobalConfig:
    """Config with a private twin home and no real waiting."""
    return GlobalConfig(
        twin_home=str(tmp_path / "home" / ".twin"),
        lock_retry_delay_s=0.0,
        plan_retry_delay_s=0.0,
        heartbeat_s=5.0,
    )


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    d = tmp_path / "project"
    d.mkdir()
    return d


@pytest.fixture
def paths(project_dir: Path, config: GlobalConfig) -> TwinPaths:
    return TwinPaths.from_repo(project_dir, config)


@pytest.fixture
def twin_path(project_dir: Path) -> Path:
    """Local taste profile in the project directory."""
    p = project_dir / "sam.twin"
    p.write_text(TWIN_TEXT)
    return p


@pytest.fixture
def three_open(paths: TwinPaths) -> TwinPaths:
    """Project whose ledger holds three open stories."""
    write_prd(paths.prd_file, [make_story(1), make_story(2), make_story(3)])
    return paths


class FakeAgent:
    """Stands in for run_agent.

    Each call pops the next action from the script (falling back to
    ``default``):

    * ``done``: mark the story done in prd.json and print the marker
    * ``sentinel``: print the marker without touching prd.json
    * ``all``: mark done and print both markers
    * ``noop``: exit 0 having done nothing
    * ``fail``: exit 1
    """

    def __init__(
        self,
        prd_file: Path,
        script: Optional[List[str]] = None,
        default: str = "done",
        on_call: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.prd_file = prd_file
        self.script = list(script or [])
        self.default = default
        self.on_call = on_call
        self.calls: List[str] = []

    def __call__(self, prompt: str) -> AgentResult:
        match = re.search(r"US-\d+", prompt)
        story_id = match.group(0) if match else ""
        self.calls.append(story_id)
        action = self.script.pop(0) if self.script else self.default
        if self.on_call is not None:
            self.on_call(story_id)

        if action == "fail":
            return AgentResult(output="boom", exit_code=1)
        if action == "noop":
            return AgentResult(output="thinking about it", exit_code=0)
        if action == "sentinel":
            return AgentResult(
                output=f"built {STORY_COMPLETE}", exit_code=0, story_complete=True
            )

        ledger = load_ledger(self.prd_file)
        ledger.get(story_id).advance(STATUS_DONE)
        save_ledger(ledger, self.prd_file)
        if action == "all":
            return AgentResult(
                output=f"{STORY_COMPLETE}{ALL_COMPLETE}",
                exit_code=0,
                story_complete=True,
                all_complete=True,
            )
        return AgentResult(
            output=f"built {story_id} {STORY_COMPLETE}", exit_code=0, story_complete=True
        )


class FakePlanner:
    """Appends pre-scripted batches of stories on each call."""

    def __init__(self, prd_file: Path, batches: Optional[List[List[Dict[str, Any]]]] = None):
        self.prd_file = prd_file
        self.batches = list(batches or [])
        self.calls = 0

    def __call__(self) -> List[Story]:
        self.calls += 1
        if not self.batches:
            return []
        ledger = load_ledger(self.prd_file) if self.prd_file.exists() else Ledger()
        added = ledger.append_stories(self.batches.pop(0))
        save_ledger(ledger, self.prd_file)
        return added


class FakeLLM:
    """Scripted one-shot model: returns strings, raises exceptions."""

    def __init__(self, responses: Optional[List[Union[str, Exception]]] = None):
        self.responses = list(responses or [])
        self.calls: List[Dict[str, str]] = []

    def __call__(self, system_prompt: str, user_message: str) -> str:
        self.calls.append({"system": system_prompt, "user": user_message})
        if not self.responses:
            raise LLMError("no scripted response")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_llm() -> Callable[..., FakeLLM]:
    return FakeLLM


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
