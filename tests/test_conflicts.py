"""Tests for multi-agent edit conflict detection."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from wormhole.timeline.conflicts import find_conflicts, group_edits_by_file
from wormhole.timeline.store import TimelineStore


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    (root / "auth.py").write_text("def login():\n    return check_password()\n")
    return root


@pytest.fixture
def store(tmp_path):
    s = TimelineStore(db_path=tmp_path / "test.db", archive_dir=tmp_path / "archives")
    yield s
    s.close()


def edit(store, project, agent, file_path="auth.py", diff=None):
    payload = {"file_path": file_path}
    if diff is not None:
        payload["diff"] = diff
    return store.add_event(agent, "file_edit", json.dumps(payload), str(project))


class TestFindConflicts:
    def test_two_agents_same_file(self, store, project):
        edit(store, project, "claude-code")
        edit(store, project, "cursor")
        conflicts = find_conflicts(store, str(project))
        assert list(conflicts) == ["auth.py"]
        assert {e.agent_id for e in conflicts["auth.py"]} == {"claude-code", "cursor"}

    def test_single_agent_is_not_a_conflict(self, store, project):
        edit(store, project, "claude-code")
        edit(store, project, "claude-code")
        assert find_conflicts(store, str(project)) == {}

    def test_different_files(self, store, project):
        edit(store, project, "claude-code", file_path="auth.py")
        edit(store, project, "cursor", file_path="routes.py")
        assert find_conflicts(store, str(project)) == {}

    def test_outside_time_window(self, store, project):
        old = edit(store, project, "claude-code")
        edit(store, project, "cursor")
        ts = int((datetime.now(timezone.utc) - timedelta(hours=2)).timestamp() * 1000)
        conn = store._get_conn()
        conn.execute("UPDATE timeline SET timestamp = ? WHERE id = ?", (ts, old))
        conn.commit()

        assert find_conflicts(store, str(project), time_window_minutes=60) == {}
        assert "auth.py" in find_conflicts(store, str(project), time_window_minutes=180)

    def test_other_actions_ignored(self, store, project):
        edit(store, project, "claude-code")
        store.add_event("cursor", "cmd_run", json.dumps({"file_path": "auth.py"}), str(project))
        assert find_conflicts(store, str(project)) == {}

    def test_file_allow_list(self, store, project):
        for agent in ("claude-code", "cursor"):
            edit(store, project, agent, file_path="src/auth.py")
            edit(store, project, agent, file_path="src/routes.py")

        conflicts = find_conflicts(store, str(project), files=["auth.py"])
        assert list(conflicts) == ["src/auth.py"]

    def test_stale_edit_removes_conflict(self, store, project):
        edit(store, project, "claude-code", diff="+    return check_password()")
        edit(store, project, "cursor", diff="+    return True  # reverted since")
        assert find_conflicts(store, str(project)) == {}

    def test_valid_edits_keep_conflict(self, store, project):
        edit(store, project, "claude-code", diff="+def login():")
        edit(store, project, "cursor", diff="+    return check_password()")
        conflicts = find_conflicts(store, str(project))
        assert len(conflicts["auth.py"]) == 2

    def test_project_scoped(self, store, project, tmp_path):
        edit(store, project, "claude-code")
        store.add_event("cursor", "file_edit", json.dumps({"file_path": "auth.py"}), "/elsewhere")
        assert find_conflicts(store, str(project)) == {}


class TestGroupEdits:
    def test_skips_unresolvable_paths(self, store, project):
        store.add_event("a", "file_edit", "not json", str(project))
        store.add_event("a", "file_edit", json.dumps({"description": "x"}), str(project))
        edit(store, project, "b")
        events = store.get_file_edits_since(str(project), datetime.now(timezone.utc) - timedelta(hours=1))
        groups = group_edits_by_file(events)
        assert list(groups) == ["auth.py"]

    def test_mistyped_field_keeps_path(self, store, project):
        store.add_event(
            "a", "file_edit", json.dumps({"file_path": "auth.py", "description": ["x"]}), str(project)
        )
        events = store.get_file_edits_since(str(project), datetime.now(timezone.utc) - timedelta(hours=1))
        assert list(group_edits_by_file(events)) == ["auth.py"]

    def test_conflict_with_mistyped_field(self, store, project):
        store.add_event("claude-code", "file_edit", json.dumps({"file_path": "auth.py", "description": 7}), str(project))
        edit(store, project, "cursor-agent")
        conflicts = find_conflicts(store, str(project))
        assert {e.agent_id for e in conflicts["auth.py"]} == {"claude-code", "cursor-agent"}
