"""Tests for plan file helpers."""

from agent_loop.core.plan import has_uncompleted_tasks, resolve_plan_path


class TestResolvePlanPath:
    """Tests for resolve_plan_path."""

    def test_none(self):
        assert resolve_plan_path(None) is None
        assert resolve_plan_path("") is None

    def test_existing_original(self, tmp_path):
        plan = tmp_path / "plan.md"
        plan.write_text("x")
        (tmp_path / "completed").mkdir()
        (tmp_path / "completed" / "plan.md").write_text("y")

        assert resolve_plan_path(str(plan)) == plan

    def test_moved_to_completed(self, tmp_path):
        (tmp_path / "completed").mkdir()
        moved = tmp_path / "completed" / "plan.md"
        moved.write_text("y")

        assert resolve_plan_path(str(tmp_path / "plan.md")) == moved

    def test_missing_everywhere_returns_original(self, tmp_path):
        assert resolve_plan_path(str(tmp_path / "plan.md")) == tmp_path / "plan.md"


class TestHasUncompletedTasks:
    """Tests for has_uncompleted_tasks."""

    def test_unchecked_item(self, tmp_path):
        plan = tmp_path / "plan.md"
        plan.write_text("# Plan\n- [x] one\n  - [ ] nested two\n")

        assert has_uncompleted_tasks(str(plan)) is True

    def test_all_checked(self, tmp_path):
        plan = tmp_path / "plan.md"
        plan.write_text("# Plan\n- [x] one\n- [x] two\nmentions - [ ] inline only\n")

        assert has_uncompleted_tasks(str(plan)) is False

    def test_unreadable_counts_as_incomplete(self, tmp_path):
        assert has_uncompleted_tasks(str(tmp_path / "missing.md")) is True
        assert has_uncompleted_tasks(None) is True

    def test_reads_moved_plan(self, tmp_path):
        (tmp_path / "completed").mkdir()
        (tmp_path / "completed" / "plan.md").write_text("- [x] done\n")

        assert has_uncompleted_tasks(str(tmp_path / "plan.md")) is False
