"""Tests for timeline event storage and retrieval."""

import json
import time
from datetime import datetime, timedelta, timezone

import pytest

from wormhole.timeline.store import TimelineStore

PROJECT = "/home/user/myproject"


@pytest.fixture
def store(tmp_path):
    """Create a TimelineStore with a temp database."""
    s = TimelineStore(db_path=tmp_path / "test.db", archive_dir=tmp_path / "archives")
    yield s
    s.close()


def add(store, action="cmd_run", agent="claude-code", project=PROJECT, **kwargs):
    payload = kwargs.pop("payload", {"command": "echo hi", "exit_code": 0})
    return store.add_event(agent, action, json.dumps(payload), project, **kwargs)


def backdate(store, event_id, delta):
    ts = int((datetime.now(timezone.utc) - delta).timestamp() * 1000)
    conn = store._get_conn()
    conn.execute("UPDATE timeline SET timestamp = ? WHERE id = ?", (ts, event_id))
    conn.commit()


class TestAddEvent:
    def test_ids_increase(self, store):
        first = add(store)
        second = add(store)
        assert second > first

    def test_get_event(self, store):
        event_id = add(store, tags=["build", "ci"])
        event = store.get_event(event_id)
        assert event is not None
        assert event.agent_id == "claude-code"
        assert event.action == "cmd_run"
        assert event.tags == ["build", "ci"]
        assert not event.isolated
        assert not event.rejected

    def test_invalid_payload_is_stored(self, store):
        event_id = store.add_event("a", "custom", "not json {", PROJECT)
        assert store.get_event(event_id).payload == "not json {"

    def test_timestamps_never_decrease(self, store):
        first = add(store)
        # Pretend the first event was written slightly in the future.
        backdate(store, first, timedelta(seconds=-60))
        second = add(store)
        assert store.get_event(second).timestamp >= store.get_event(first).timestamp

    def test_tags_are_deduplicated(self, store):
        event_id = add(store, tags=["api", " api ", "", "db"])
        assert store.get_event(event_id).tags == ["api", "db"]


class TestRecentEvents:
    def test_oldest_first_with_cursor(self, store):
        ids = [add(store) for _ in range(3)]
        result = store.get_recent_events(PROJECT, limit=10)
        assert [e.id for e in result.events] == ids
        assert result.cursor == f"evt_{ids[-1]}"

    def test_limit_keeps_most_recent(self, store):
        ids = [add(store) for _ in range(5)]
        result = store.get_recent_events(PROJECT, limit=2)
        assert [e.id for e in result.events] == ids[-2:]

    def test_empty_has_no_cursor(self, store):
        result = store.get_recent_events(PROJECT, limit=5)
        assert result.events == []
        assert result.cursor is None

    def test_project_isolation(self, store):
        add(store, project="/proj1")
        add(store, project="/proj2")
        result = store.get_recent_events("/proj1", limit=10)
        assert len(result.events) == 1
        assert result.events[0].project_path == "/proj1"

    def test_delta_query(self, store):
        first = add(store)
        second = add(store)
        result = store.get_recent_events(PROJECT, limit=10, since_cursor=f"evt_{first}")
        assert [e.id for e in result.events] == [second]

    def test_delta_query_with_nothing_new(self, store):
        last = add(store)
        result = store.get_recent_events(PROJECT, limit=10, since_cursor=f"evt_{last}")
        assert result.events == []
        assert result.cursor is None

    @pytest.mark.parametrize("cursor", ["evt_abc", "garbage", "evt_", "evt_-1"])
    def test_malformed_cursor_is_ignored(self, store, cursor):
        add(store)
        add(store)
        result = store.get_recent_events(PROJECT, limit=10, since_cursor=cursor)
        assert len(result.events) == 2

    def test_action_filter(self, store):
        add(store, action="cmd_run")
        edit = add(store, action="file_edit", payload={"file_path": "a.py"})
        result = store.get_recent_events(PROJECT, limit=10, action_types=["file_edit"])
        assert [e.id for e in result.events] == [edit]

        result = store.get_recent_events(PROJECT, limit=10, action_types=["nothing"])
        assert result.events == []

    def test_tag_filter_any_of(self, store):
        api = add(store, tags=["api"])
        db = add(store, tags=["db", "slow"])
        add(store, tags=["ui"])
        add(store)
        result = store.get_recent_events(PROJECT, limit=10, tags=["api", "db"])
        assert [e.id for e in result.events] == [api, db]

    def test_tag_filter_matches_whole_tags(self, store):
        add(store, tags=["api-v2"])
        add(store, tags=["rapid"])
        result = store.get_recent_events(PROJECT, limit=10, tags=["api"])
        assert result.events == []

    def test_isolation_boundary_hides_history(self, store):
        add(store)
        add(store, tags=["keep"])
        boundary = add(store, action="session_start", payload={"name": "s"}, isolated=True)
        after = add(store)

        result = store.get_recent_events(PROJECT, limit=10)
        assert [e.id for e in result.events] == [boundary, after]

        result = store.get_recent_events(PROJECT, limit=10, tags=["keep"])
        assert result.events == []

        result = store.get_recent_events(PROJECT, limit=10, since_cursor="evt_0")
        assert all(e.id >= boundary for e in result.events)

    def test_latest_boundary_wins(self, store):
        add(store, isolated=True)
        second = add(store, isolated=True)
        result = store.get_recent_events(PROJECT, limit=10)
        assert [e.id for e in result.events] == [second]

    def test_boundary_in_other_project_has_no_effect(self, store):
        mine = add(store)
        add(store, project="/other", isolated=True)
        result = store.get_recent_events(PROJECT, limit=10)
        assert [e.id for e in result.events] == [mine]


class TestFileEditsAndTags:
    def test_file_edits_since(self, store):
        old = add(store, action="file_edit", payload={"file_path": "a.py"})
        recent = add(store, action="file_edit", payload={"file_path": "a.py"})
        add(store, action="cmd_run")
        backdate(store, old, timedelta(hours=2))

        cutoff = datetime.now(timezone.utc) - timedelta(hours=1)
        events = store.get_file_edits_since(PROJECT, cutoff)
        assert [e.id for e in events] == [recent]

    def test_mark_rejected(self, store):
        event_id = add(store, action="file_edit", payload={"file_path": "a.py"})
        assert store.mark_rejected([event_id]) == 1
        assert store.get_event(event_id).rejected
        assert store.mark_rejected([]) == 0

    def test_tag_counts(self, store):
        add(store, tags=["api", "db"])
        add(store, tags=["api"])
        add(store, tags=["zzz"], project="/other")
        assert store.get_tag_counts(PROJECT) == {"api": 2, "db": 1}
        assert store.get_tag_counts("/nowhere") == {}


class TestCleanup:
    def test_cleanup_old_events(self, store):
        old = add(store)
        keep = add(store)
        backdate(store, old, timedelta(hours=48))

        assert store.cleanup_old_events(retention_hours=24) == 1
        assert store.get_event(old) is None
        assert store.get_event(keep) is not None

    def test_cleanup_removes_tags(self, store):
        old = add(store, tags=["gone"])
        backdate(store, old, timedelta(hours=48))
        store.cleanup_old_events(retention_hours=24)
        assert store.get_tag_counts(PROJECT) == {}

    def test_cleanup_project_scope(self, store):
        add(store, project="/a")
        add(store, project="/a")
        add(store, project="/b")
        assert store.cleanup_by_scope("project", project_path="/a") == 2
        assert store.event_count() == 1

    def test_cleanup_session_scope(self, store):
        session = store.create_session(PROJECT, "claude-code")
        add(store, session_id=session.id)
        add(store)
        assert store.cleanup_by_scope("session", session_id=session.id) == 1
        assert store.get_session(session.id) is None

    def test_cleanup_all(self, store):
        add(store, project="/a")
        add(store, project="/b")
        store.create_session("/a", "x")
        assert store.cleanup_by_scope("all") == 2
        assert store.event_count() == 0
        assert store.list_sessions("/a", active_only=False) == []

    def test_scope_requires_target(self, store):
        with pytest.raises(ValueError, match="project_path"):
            store.cleanup_by_scope("project")
        with pytest.raises(ValueError, match="session_id"):
            store.cleanup_by_scope("session")

    def test_archive_before_delete(self, store, tmp_path):
        add(store, project="/a")
        store.cleanup_by_scope("project", project_path="/a", archive=True)

        files = list((tmp_path / "archives").glob("archive-*.json"))
        assert len(files) == 1
        archived = json.loads(files[0].read_text())
        assert archived[0]["project_path"] == "/a"

    def test_archive_skips_empty(self, store, tmp_path):
        store.cleanup_by_scope("project", project_path="/empty", archive=True)
        assert not list((tmp_path / "archives").glob("*.json"))


class TestSessions:
    def test_create_and_get(self, store):
        session = store.create_session(PROJECT, "claude-code", name="bugfix-auth", description="Fix login")
        retrieved = store.get_session(session.id)
        assert retrieved is not None
        assert retrieved.name == "bugfix-auth"
        assert retrieved.started_by == "claude-code"
        assert retrieved.active
        assert retrieved.ended_at is None

    def test_get_nonexistent(self, store):
        assert store.get_session("nonexistent") is None

    def test_end_session(self, store):
        session = store.create_session(PROJECT, "cursor")
        ended = store.end_session(session.id, summary="Done")
        assert ended is not None
        assert not ended.active
        assert ended.summary == "Done"
        assert ended.ended_at is not None

    def test_ended_session_stays_ended(self, store):
        session = store.create_session(PROJECT, "cursor")
        first = store.end_session(session.id, summary="First")
        second = store.end_session(session.id, summary="Second")
        assert second.summary == "First"
        assert second.ended_at == first.ended_at

    def test_end_unknown_session(self, store):
        assert store.end_session("nonexistent") is None

    def test_list_sessions(self, store):
        first = store.create_session(PROJECT, "a", name="one")
        time.sleep(0.002)
        second = store.create_session(PROJECT, "b", name="two")
        store.create_session("/other", "c")
        store.end_session(first.id)

        active = store.list_sessions(PROJECT)
        assert [s.id for s in active] == [second.id]

        everything = store.list_sessions(PROJECT, active_only=False)
        assert [s.id for s in everything] == [second.id, first.id]

    def test_display_name_falls_back_to_id(self, store):
        session = store.create_session(PROJECT, "a")
        assert session.display_name == session.id[:8]


class TestActiveSessions:
    def test_set_and_get(self):
        from wormhole.timeline.sessions import ActiveSessions

        active = ActiveSessions()
        assert active.get("/p") is None
        active.set("/p", "s1")
        active.set("/q", "s1")
        active.set("/r", "s2")
        assert "/p" in active

        active.forget_session("s1")
        assert active.get("/p") is None
        assert active.get("/q") is None
        assert active.get("/r") == "s2"

        active.clear("/r")
        assert "/r" not in active
