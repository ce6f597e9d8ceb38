"""Unit tests for twin.steering module."""

import json
from pathlib import Path

from conftest import TWIN_TEXT, FakeLLM, make_story, write_prd
from twin.config import GlobalConfig, TwinPaths
from twin.errors import LLMError
from twin.state import load_ledger
from twin.steering import SteeringIntake


def _intake(paths: TwinPaths, twin_path: Path, llm: FakeLLM, config: GlobalConfig) -> SteeringIntake:
    return SteeringIntake(paths, twin_path, llm=llm, config=config)


def _reply(stories=None, twin_append=None) -> str:
    return json.dumps({"newStories": stories or [], "twinAppend": twin_append})


class TestSteeringIntake:
    """Tests for SteeringIntake.apply."""

    def test_no_file_is_noop(self, three_open: TwinPaths, twin_path: Path, config: GlobalConfig) -> None:
        """Test nothing happens and no model call is made without a note."""
        llm = FakeLLM()
        result = _intake(three_open, twin_path, llm, config).apply()
        assert not result.consumed
        assert llm.calls == []
        assert not three_open.steer_file.exists()

    def test_whitespace_only_is_noop(self, three_open: TwinPaths, twin_path: Path, config: GlobalConfig) -> None:
        """Test a blank steer.md is treated as empty."""
        three_open.steer_file.write_text("  \n\n")
        llm = FakeLLM()
        _intake(three_open, twin_path, llm, config).apply()
        assert llm.calls == []

    def test_two_new_stories_and_null_append(
        self, paths: TwinPaths, twin_path: Path, config: GlobalConfig
    ) -> None:
        """Test stories get the next ids, profile untouched, note cleared."""
        write_prd(paths.prd_file, [make_story(n) for n in range(1, 5)])
        paths.steer_file.write_text("add dark mode and an export button")
        llm = FakeLLM([
            _reply([
                {"id": "US-001", "title": "Dark mode", "status": "done"},
                {"title": "Export button"},
            ])
        ])

        result = _intake(paths, twin_path, llm, config).apply()

        ledger = load_ledger(paths.prd_file)
        assert [s.id for s in ledger.stories[-2:]] == ["US-005", "US-006"]
        assert [s.title for s in result.new_stories] == ["Dark mode", "Export button"]
        assert all(s.status == "open" for s in ledger.stories[-2:])
        assert twin_path.read_text() == TWIN_TEXT
        assert paths.steer_file.read_text() == ""
        assert not result.twin_appended

    def test_request_carries_summary_profile_and_next_id(
        self, three_open: TwinPaths, twin_path: Path, config: GlobalConfig
    ) -> None:
        """Test the model sees the note, a compact ledger, the profile and next id."""
        three_open.steer_file.write_text("focus on speed")
        llm = FakeLLM([_reply()])
        _intake(three_open, twin_path, llm, config).apply()
        user = llm.calls[0]["user"]
        assert "focus on speed" in user
        assert '"id": "US-001"' in user
        assert "acceptanceCriteria" not in user
        assert TWIN_TEXT.strip() in user
        assert "US-004" in user

    def test_twin_append_written_under_lock(
        self, three_open: TwinPaths, twin_path: Path, config: GlobalConfig
    ) -> None:
        """Test a twinAppend block lands after a blank line and the lock is gone."""
        three_open.steer_file.write_text("always write tests first")
        llm = FakeLLM([_reply(twin_append="## Testing\n- Tests first.")])
        result = _intake(three_open, twin_path, llm, config).apply()
        assert result.twin_appended
        assert twin_path.read_text().endswith("\n\n## Testing\n- Tests first.\n")
        assert not (twin_path.parent / "sam.twin.lock").exists()
        assert len(load_ledger(three_open.prd_file).stories) == 3

    def test_model_failure_keeps_note(
        self, three_open: TwinPaths, twin_path: Path, config: GlobalConfig
    ) -> None:
        """Test an unreachable model leaves steer.md for the next cycle."""
        three_open.steer_file.write_text("please add search")
        before = three_open.prd_file.read_text()
        result = _intake(three_open, twin_path, FakeLLM([LLMError("down")]), config).apply()
        assert result.error
        assert three_open.steer_file.read_text() == "please add search"
        assert three_open.prd_file.read_text() == before

    def test_malformed_reply_clears_note_without_mutation(
        self, three_open: TwinPaths, twin_path: Path, config: GlobalConfig
    ) -> None:
        """Test unparseable replies discard the note and change nothing else."""
        three_open.steer_file.write_text("please add search")
        before = three_open.prd_file.read_text()
        result = _intake(three_open, twin_path, FakeLLM(["sure, I'll add search!"]), config).apply()
        assert result.consumed
        assert result.error
        assert three_open.steer_file.read_text() == ""
        assert three_open.prd_file.read_text() == before
        assert twin_path.read_text() == TWIN_TEXT

    def test_wrong_shape_is_malformed(
        self, three_open: TwinPaths, twin_path: Path, config: GlobalConfig
    ) -> None:
        """Test newStories that is not a list counts as malformed."""
        three_open.steer_file.write_text("x")
        before = three_open.prd_file.read_text()
        _intake(three_open, twin_path, FakeLLM(['{"newStories": "nope"}']), config).apply()
        assert three_open.prd_file.read_text() == before
        assert three_open.steer_file.read_text() == ""

    def test_fenced_reply_is_accepted(
        self, three_open: TwinPaths, twin_path: Path, config: GlobalConfig
    ) -> None:
        """Test code-fenced JSON replies are parsed."""
        three_open.steer_file.write_text("add search")
        llm = FakeLLM(["```json\n" + _reply([{"title": "Search"}]) + "\n```"])
        result = _intake(three_open, twin_path, llm, config).apply()
        assert [s.id for s in result.new_stories] == ["US-004"]

    def test_ids_strictly_increase_across_passes(
        self, three_open: TwinPaths, twin_path: Path, config: GlobalConfig
    ) -> None:
        """Test repeated steering never reuses an id."""
        intake = _intake(
            three_open,
            twin_path,
            FakeLLM([_reply([{"title": "a"}]), _reply([{"title": "b"}, {"title": "c"}])]),
            config,
        )
        three_open.steer_file.write_text("one")
        intake.apply()
        three_open.steer_file.write_text("two")
        intake.apply()
        ids = [s.id for s in load_ledger(three_open.prd_file).stories]
        assert ids == ["US-001", "US-002", "US-003", "US-004", "US-005", "US-006"]

    def test_ids_of_removed_stories_not_reused(
        self, three_open: TwinPaths, twin_path: Path, config: GlobalConfig
    ) -> None:
        """Test a story removed by hand after steering keeps its id retired."""
        intake = _intake(
            three_open,
            twin_path,
            FakeLLM([_reply([{"title": "a"}]), _reply([{"title": "b"}])]),
            config,
        )
        three_open.steer_file.write_text("one")
        intake.apply()
        doc = json.loads(three_open.prd_file.read_text())
        doc["userStories"] = [s for s in doc["userStories"] if s["id"] != "US-004"]
        three_open.prd_file.write_text(json.dumps(doc))
        three_open.steer_file.write_text("two")
        result = intake.apply()
        assert [s.id for s in result.new_stories] == ["US-005"]
