"""Unit tests for twin.commands and the CLI dispatcher."""

import json
import os
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from conftest import FakeLLM, make_story, write_prd
from twin.cli import _create_parser, main
from twin.commands.build import _check_agent_available, cmd_build
from twin.commands.init import QUESTIONS, cmd_init
from twin.commands.plan import cmd_plan
from twin.commands.scout import build_tree, cmd_scout, is_skipped_file, read_project_files
from twin.commands.steer import cmd_steer
from twin.config import GlobalConfig, TwinPaths
from twin.controller import LoopSummary, StopReason
from twin.errors import AgentNotFoundError, TasteProfileNotFoundError


class TestSteerCommand:
    """Tests for cmd_steer."""

    def test_inline_message_appended(self, project_dir: Path, config: GlobalConfig) -> None:
        """Test inline words are joined and queued."""
        assert cmd_steer(project_dir, ["add", "dark", "mode"], config) == 0
        assert (project_dir / "steer.md").read_text() == "add dark mode\n"

    def test_notes_queue_up(self, project_dir: Path, config: GlobalConfig) -> None:
        """Test a second note does not overwrite the first."""
        cmd_steer(project_dir, ["first"], config)
        cmd_steer(project_dir, ["second"], config)
        text = (project_dir / "steer.md").read_text()
        assert "first" in text and "second" in text

    def test_prompts_when_no_args(self, project_dir: Path, config: GlobalConfig) -> None:
        """Test the note is asked for interactively."""
        cmd_steer(project_dir, [], config, input_fn=lambda _q: "typed note")
        assert "typed note" in (project_dir / "steer.md").read_text()

    def test_empty_message_writes_nothing(self, project_dir: Path, config: GlobalConfig) -> None:
        """Test an empty answer leaves no file."""
        assert cmd_steer(project_dir, [], config, input_fn=lambda _q: "  ") == 0
        assert not (project_dir / "steer.md").exists()

    def test_reports_active_build(
        self, project_dir: Path, config: GlobalConfig, capsys: pytest.CaptureFixture
    ) -> None:
        """Test the user is told a running build will pick the note up."""
        (project_dir / ".twin-build.pid").write_text(str(os.getpid()))
        cmd_steer(project_dir, ["hi"], config)
        assert "running build" in capsys.readouterr().out


class TestBuildCommand:
    """Tests for cmd_build preconditions and wiring."""

    def test_missing_ledger_exits_1(self, project_dir: Path, twin_path: Path, config: GlobalConfig) -> None:
        """Test a project without prd.json is a configuration error."""
        assert cmd_build(project_dir, config=config) == 1

    def test_missing_profile_raises(self, paths: TwinPaths, config: GlobalConfig) -> None:
        """Test a project without a taste profile is a configuration error."""
        write_prd(paths.prd_file, [make_story(1)])
        with pytest.raises(TasteProfileNotFoundError) as exc:
            cmd_build(paths.repo_root, config=config)
        assert "twin init" in exc.value.hint

    def test_missing_agent_exits_1(
        self, three_open: TwinPaths, twin_path: Path, config: GlobalConfig
    ) -> None:
        """Test an unavailable agent binary stops before the loop starts."""
        config.agent_command = "definitely-not-a-real-agent-binary"
        assert cmd_build(three_open.repo_root, config=config) == 1
        assert not three_open.run_marker.exists()

    def test_check_agent_available(self) -> None:
        """Test availability is a PATH lookup."""
        ok, _ = _check_agent_available(GlobalConfig(agent_command="sh"))
        assert ok
        ok, message = _check_agent_available(GlobalConfig(agent_command="nope-not-here"))
        assert not ok
        assert "TWIN_AGENT_COMMAND" in message

    def test_default_quota_without_loop(
        self, three_open: TwinPaths, twin_path: Path, config: GlobalConfig
    ) -> None:
        """Test the configured quota applies without --loop and not with it."""
        config.agent_command = "sh"
        with patch("twin.commands.build.BuildLoop") as loop_cls:
            loop_cls.return_value.run.return_value = LoopSummary(StopReason.COMPLETE)
            cmd_build(three_open.repo_root, config=config)
            assert loop_cls.call_args.kwargs["max_items"] == 5
            cmd_build(three_open.repo_root, loop_mode=True, config=config)
            assert loop_cls.call_args.kwargs["max_items"] is None

    def test_marker_present_during_run_and_removed_after(
        self, three_open: TwinPaths, twin_path: Path, config: GlobalConfig
    ) -> None:
        """Test the run marker brackets the loop."""
        config.agent_command = "sh"
        seen = {}

        def fake_run():
            seen["marker"] = three_open.run_marker.exists()
            return LoopSummary(StopReason.QUOTA, built=1, cycles=1)

        with patch("twin.commands.build.BuildLoop") as loop_cls:
            loop_cls.return_value.run.side_effect = fake_run
            assert cmd_build(three_open.repo_root, config=config) == 0
        assert seen["marker"] is True
        assert not three_open.run_marker.exists()

    def test_config_error_summary_exits_1(
        self, three_open: TwinPaths, twin_path: Path, config: GlobalConfig, capsys: pytest.CaptureFixture
    ) -> None:
        """Test a loop stopped by a configuration error exits non-zero."""
        config.agent_command = "sh"
        with patch("twin.commands.build.BuildLoop") as loop_cls:
            loop_cls.return_value.run.return_value = LoopSummary(
                StopReason.CONFIG_ERROR, error="agent vanished", hint="reinstall"
            )
            assert cmd_build(three_open.repo_root, config=config) == 1
        out = capsys.readouterr().out
        assert "agent vanished" in out
        assert "reinstall" in out

    def test_summary_block(
        self, three_open: TwinPaths, twin_path: Path, config: GlobalConfig, capsys: pytest.CaptureFixture
    ) -> None:
        """Test the final report shows counts, time and a next command."""
        config.agent_command = "sh"
        with patch("twin.commands.build.BuildLoop") as loop_cls:
            loop_cls.return_value.run.return_value = LoopSummary(
                StopReason.QUOTA, built=2, cycles=2, elapsed_s=75
            )
            cmd_build(three_open.repo_root, config=config)
        out = capsys.readouterr().out
        assert "BUILD QUOTA REACHED" in out
        assert "Stories built:  2" in out
        assert "1m 15s" in out
        assert "Next:" in out


class TestPlanCommand:
    """Tests for cmd_plan."""

    def test_bootstraps_product_then_plans(
        self, paths: TwinPaths, twin_path: Path, config: GlobalConfig, capsys: pytest.CaptureFixture
    ) -> None:
        """Test missing product.md is created from two answers."""
        answers = iter(["a recipe app", "home cooks"])
        reply = json.dumps({"project": "recipes", "userStories": [{"title": "Save a recipe", "acceptanceCriteria": ["saved"]}]})
        code = cmd_plan(paths.repo_root, config, input_fn=lambda _q: next(answers), llm=FakeLLM([reply]))
        assert code == 0
        assert "a recipe app" in paths.product_file.read_text()
        assert "home cooks" in paths.product_file.read_text()
        assert "US-001" in capsys.readouterr().out

    def test_requires_profile(self, paths: TwinPaths, config: GlobalConfig) -> None:
        """Test planning without a taste profile is a configuration error."""
        llm = FakeLLM()
        with pytest.raises(TasteProfileNotFoundError):
            cmd_plan(paths.repo_root, config, input_fn=MagicMock(), llm=llm)
        assert llm.calls == []


class TestScoutCommand:
    """Tests for cmd_scout and its project readers."""

    def test_skips_credentials_and_binaries(self) -> None:
        """Test secrets and binaries are never read."""
        assert is_skipped_file(".env")
        assert is_skipped_file(".env.production")
        assert is_skipped_file("server.pem")
        assert is_skipped_file("logo.PNG")
        assert not is_skipped_file("README.md")

    def test_files_truncated(self, project_dir: Path) -> None:
        """Test long files are cut at the character limit."""
        (project_dir / "big.txt").write_text("x" * 5000)
        (project_dir / ".env").write_text("SECRET=1")
        text = read_project_files(project_dir)
        assert "... (truncated)" in text
        assert "SECRET" not in text

    def test_tree_skips_build_dirs_and_dotfiles(self, project_dir: Path) -> None:
        """Test node_modules and hidden entries are left out."""
        (project_dir / "src").mkdir()
        (project_dir / "src" / "app.py").write_text("")
        (project_dir / "node_modules").mkdir()
        (project_dir / ".hidden").write_text("")
        tree = build_tree(project_dir)
        assert "src/\n  app.py\n" in tree
        assert "node_modules" not in tree
        assert ".hidden" not in tree

    def test_writes_memory_and_product(self, project_dir: Path, config: GlobalConfig) -> None:
        """Test both documents are written from the two model calls."""
        (project_dir / "README.md").write_text("# Demo")
        llm = FakeLLM(["# Memory\n- things", "# Product\n\n## What\nDemo"])
        assert cmd_scout(project_dir, config, llm=llm, sleep_fn=MagicMock()) == 0
        assert (project_dir / "project-memory.md").read_text() == "# Memory\n- things\n"
        assert (project_dir / "product.md").read_text().startswith("# Product")
        assert "# Demo" in llm.calls[0]["user"]

    def test_memory_failure_exits_1(self, project_dir: Path, config: GlobalConfig) -> None:
        """Test exhausted retries on the memory call fail the command."""
        from twin.errors import LLMError

        (project_dir / "README.md").write_text("# Demo")
        llm = FakeLLM([LLMError("x")] * 3)
        assert cmd_scout(project_dir, config, llm=llm, sleep_fn=MagicMock()) == 1
        assert not (project_dir / "project-memory.md").exists()


class TestInitCommand:
    """Tests for cmd_init."""

    def test_writes_profile_to_twin_home(self, config: GlobalConfig) -> None:
        """Test the interview produces <name>.twin in the global directory."""
        answers = iter(["Sam Lee"] + [f"answer {i}" for i in range(len(QUESTIONS))])
        llm = FakeLLM(["# Twin: Sam\n- You ship fast."])
        assert cmd_init(config, input_fn=lambda _q: next(answers), llm=llm) == 0
        profile = config.twin_home_path / "sam-lee.twin"
        assert profile.read_text() == "# Twin: Sam\n- You ship fast.\n"
        assert "A: answer 4" in llm.calls[0]["user"]
        assert "Sam Lee" in llm.calls[0]["system"]

    def test_keeps_existing_profile_unless_confirmed(self, config: GlobalConfig) -> None:
        """Test an existing profile is not overwritten without a yes."""
        config.twin_home_path.mkdir(parents=True)
        (config.twin_home_path / "sam.twin").write_text("original")
        answers = iter(["Sam", "n"])
        llm = FakeLLM()
        assert cmd_init(config, input_fn=lambda _q: next(answers), llm=llm) == 0
        assert (config.twin_home_path / "sam.twin").read_text() == "original"
        assert llm.calls == []


class TestCli:
    """Tests for argument parsing and dispatch."""

    def test_build_flags(self) -> None:
        """Test build options parse into the expected fields."""
        args = _create_parser().parse_args(["build", "-n", "3", "--loop", "--max-minutes", "90"])
        assert (args.max_items, args.loop, args.max_minutes) == (3, True, 90.0)

    def test_build_defaults(self) -> None:
        """Test build defaults leave the quota to the command."""
        args = _create_parser().parse_args(["build"])
        assert args.max_items is None
        assert not args.loop

    def test_negative_quota_rejected(self) -> None:
        """Test argparse rejects a negative quota with exit code 2."""
        with pytest.raises(SystemExit) as exc:
            _create_parser().parse_args(["build", "-n", "-1"])
        assert exc.value.code == 2

    def test_no_command_prints_help(self, capsys: pytest.CaptureFixture) -> None:
        """Test running with no command shows help and exits 0."""
        assert main([]) == 0
        assert "usage: twin" in capsys.readouterr().out

    def test_configuration_errors_exit_1(self, capsys: pytest.CaptureFixture) -> None:
        """Test ConfigurationError from a handler prints the hint and exits 1."""
        with patch("twin.cli.cmd_init", side_effect=AgentNotFoundError("no claude", hint="install claude")):
            assert main(["init"]) == 1
        err = capsys.readouterr().err
        assert "no claude" in err
        assert "install claude" in err

    def test_missing_profile_exits_1(
        self,
        paths: TwinPaths,
        config: GlobalConfig,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture,
    ) -> None:
        """Test build without a taste profile exits 1 with the init hint."""
        write_prd(paths.prd_file, [make_story(1)])
        monkeypatch.chdir(paths.repo_root)
        with patch("twin.cli.get_global_config", return_value=config):
            assert main(["build"]) == 1
        err = capsys.readouterr().err
        assert "No taste profile" in err
        assert "twin init" in err
