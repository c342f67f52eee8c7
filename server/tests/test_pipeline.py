"""End-to-end tests for the hook -> ledger -> observer pipeline."""

from __future__ import annotations

import json

import pytest

from tooltrace.app_state import TraceState


class FakeHost:
    def __init__(self) -> None:
        self.handlers: dict = {}

    def on(self, name, handler) -> None:
        self.handlers[name] = handler


@pytest.fixture
def state(make_config, workspace, host_dir, write_json):
    write_json(
        host_dir / "agents/main/sessions/sessions.json",
        {
            "s1": {"sessionId": "sess-1", "origin": {"label": "Registry label"}, "channel": "telegram"},
            "agent:main:cron:job-1": {"sessionId": "sess-cron"},
        },
    )
    write_json(workspace / "memory/session-meta.json", {"sessions": {"sess-1": {"label": "Ops chat"}}})
    write_json(host_dir / "cron/jobs.json", {"jobs": [{"id": "job-1", "name": "Nightly"}]})
    (workspace / "IDENTITY.md").write_text("- **Name:** Pi\n")
    st = TraceState(make_config())
    st.resolver.reload()
    return st


def ledger_records(state) -> list[dict]:
    return [json.loads(line) for line in state.ledger.tail(2000)]


class TestResultPersistPath:
    def test_start_joined_into_done_record(self, state):
        p = state.pipeline
        p.on_before_tool_call({"toolName": "exec", "params": {"command": "ls -la"}}, {"sessionKey": "s1"})
        assert ledger_records(state) == []

        record = p.on_tool_result_persist(
            {"message": {"toolName": "exec", "details": {"durationMs": 42}}}, {"sessionKey": "s1"}
        )

        rows = ledger_records(state)
        assert len(rows) == 1
        row = rows[0]
        assert row == record.to_line_dict()
        assert row["tool"] == "exec"
        assert row["phase"] == "done"
        assert row["summary"] == "ls -la"
        assert row["details"]["durationMs"] == 42
        assert row["details"]["result"] == "ok"
        assert row["origin"] == "plugin"
        assert row["agent"] == {"id": "main", "displayName": "Pi"}
        assert row["session"] == {"key": "s1", "id": "sess-1", "label": "Ops chat", "channel": "telegram"}
        assert row["timestamp"].endswith("Z") and len(row["timestamp"]) == 20

    def test_without_start_summary_falls_back_to_tool_name(self, state):
        state.pipeline.on_tool_result_persist(
            {"message": {"message": {"toolName": "read", "isError": True, "toolCallId": "call-7"}}},
            {"sessionKey": "s1"},
        )
        row = ledger_records(state)[0]
        assert row["summary"] == "read"
        assert row["correlationKey"] == "call-7"
        assert row["details"] == {"error": "tool error", "result": "error"}

    def test_non_string_tool_name_still_joins_its_start(self, state):
        p = state.pipeline
        p.on_before_tool_call({"toolName": 7, "params": {"path": "/tmp/a"}}, {"sessionKey": "s1"})
        assert state.correlator.pending("s1", "7") == 1

        p.on_tool_result_persist({"message": {"toolName": 7}}, {"sessionKey": "s1"})

        row = ledger_records(state)[0]
        assert row["tool"] == "7"
        assert row["details"]["paths"] == ["/tmp/a"]
        assert state.correlator.pending("s1", "7") == 0

    def test_start_paths_and_url_carried_over(self, state):
        p = state.pipeline
        p.on_before_tool_call(
            {"toolName": "browser", "params": {"action": "open", "targetUrl": "https://x.test", "path": "/tmp/shot.png"}},
            {"sessionKey": "s1"},
        )
        p.on_tool_result_persist({"toolName": "browser"}, {"sessionKey": "s1", "toolCallId": "c1"})
        row = ledger_records(state)[0]
        assert row["summary"] == "open https://x.test"
        assert row["details"]["url"] == "https://x.test"
        assert row["details"]["paths"] == ["/tmp/shot.png"]

    def test_unknown_session_uses_key_as_is(self, state):
        state.pipeline.on_tool_result_persist({"toolName": "exec"}, {"sessionKey": "mystery"})
        assert ledger_records(state)[0]["session"] == {"key": "mystery"}

    def test_cron_session_label_and_channel(self, state):
        state.pipeline.on_tool_result_persist({"toolName": "cron"}, {"sessionKey": "agent:main:cron:job-1"})
        session = ledger_records(state)[0]["session"]
        assert session["label"] == "cron:Nightly"
        assert session["channel"] == "cron"

    def test_other_agent_keeps_its_own_id(self, state):
        state.pipeline.on_tool_result_persist({"toolName": "exec"}, {"sessionKey": "s1", "agentId": "helper"})
        assert ledger_records(state)[0]["agent"] == {"id": "helper", "displayName": "helper"}


class TestSanitization:
    def test_sensitive_params_never_reach_the_ledger(self, state):
        p = state.pipeline
        p.on_after_tool_call(
            {
                "toolName": "web_fetch",
                "params": {"url": "https://api.test", "apiKey": "sk-abcdef0123456789"},
                "durationMs": 5,
            },
            {"sessionKey": "s1"},
        )
        raw = state.ledger.path.read_text()
        assert "apiKey" not in raw
        assert "sk-abcdef0123456789" not in raw

    def test_start_summary_is_sanitized(self, state):
        p = state.pipeline
        p.on_before_tool_call({"toolName": "exec", "params": {"command": "curl -H 'x' " + "a" * 300}}, {"sessionKey": "s1"})
        p.on_tool_result_persist({"toolName": "exec"}, {"sessionKey": "s1"})
        assert ledger_records(state)[0]["summary"].startswith("<redacted:")

    def test_after_call_duration_is_sanitized(self, state):
        state.pipeline.on_after_tool_call(
            {"toolName": "exec", "params": {}, "durationMs": "Bearer abcdefghijklmnop"}, {"sessionKey": "s1"}
        )
        row = ledger_records(state)[0]
        assert row["details"]["durationMs"] == "<redacted:bearer>"
        assert "abcdefghijklmnop" not in state.ledger.path.read_text()

    def test_tool_name_summary_fallback_is_sanitized(self, state):
        state.pipeline.on_tool_result_persist({"toolName": "x" * 500}, {"sessionKey": "s1"})
        assert ledger_records(state)[0]["summary"] == "<redacted:500>"

    def test_call_id_is_sanitized(self, state):
        state.pipeline.on_tool_result_persist(
            {"toolName": "read"}, {"sessionKey": "s1", "toolCallId": "sk-abcdef0123456789"}
        )
        assert ledger_records(state)[0]["correlationKey"] == "<redacted:sk>"


class TestAfterCallPath:
    def test_after_call_is_a_complete_record(self, state):
        record = state.pipeline.on_after_tool_call(
            {"toolName": "exec", "params": {"command": "make"}, "durationMs": 7, "error": "exit 2"},
            {"sessionKey": "s1"},
        )
        row = ledger_records(state)[0]
        assert row == record.to_line_dict()
        assert row["summary"] == "make"
        assert row["correlationKey"] == "s1|after|exec|make"
        assert row["details"] == {"durationMs": 7, "error": "exit 2", "paths": [], "result": "error"}

    def test_after_call_does_not_consume_starts(self, state):
        p = state.pipeline
        p.on_before_tool_call({"toolName": "exec", "params": {"command": "ls"}}, {"sessionKey": "s1"})
        p.on_after_tool_call({"toolName": "exec", "params": {"command": "ls"}}, {"sessionKey": "s1"})
        assert state.correlator.pending("s1", "exec") == 1

    def test_both_completion_hooks_yield_one_record(self, state):
        p = state.pipeline
        p.on_before_tool_call({"toolName": "exec", "params": {"command": "ls"}}, {"sessionKey": "s1"})
        assert p.on_after_tool_call({"toolName": "exec", "params": {"command": "ls"}, "durationMs": 3}, {"sessionKey": "s1"})
        assert p.on_tool_result_persist({"toolName": "exec"}, {"sessionKey": "s1"}) is None

        assert len(ledger_records(state)) == 1
        # The suppressed completion still consumed its start
        assert state.correlator.pending("s1", "exec") == 0

    def test_dedupe_can_be_disabled(self, make_config):
        st = TraceState(make_config(dedupeCompletions=False))
        st.pipeline.on_after_tool_call({"toolName": "exec"}, {"sessionKey": "s1"})
        st.pipeline.on_tool_result_persist({"toolName": "exec"}, {"sessionKey": "s1"})
        assert len(st.ledger.tail(10)) == 2


class TestNotesAndFanout:
    def test_note_reaches_ledger_and_live_observer(self, state):
        sub = state.broadcaster.subscribe()
        state.pipeline.submit_note("checked logs")

        row = ledger_records(state)[0]
        assert row["tool"] == "note"
        assert row["summary"] == "checked logs"
        assert row["details"] == {"result": "ok"}
        assert "phase" not in row
        assert sub.queue.get_nowait() == row

    def test_note_with_session_key(self, state):
        state.pipeline.submit_note("hello", session_key="s1")
        assert ledger_records(state)[0]["session"]["label"] == "Ops chat"

    def test_publish_order_matches_append_order(self, state):
        sub = state.broadcaster.subscribe()
        for i in range(5):
            state.pipeline.submit_note(f"n{i}")
        published = [sub.queue.get_nowait()["summary"] for _ in range(5)]
        assert published == [r["summary"] for r in ledger_records(state)]

    def test_append_failure_does_not_break_the_host(self, state, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        state.ledger.path = blocker / "ledger.jsonl"
        sub = state.broadcaster.subscribe()
        record = state.pipeline.on_tool_result_persist({"toolName": "exec"}, {"sessionKey": "s1"})
        assert record is not None
        assert sub.queue.get_nowait()["tool"] == "exec"


class TestTimestamps:
    def test_timestamps_never_go_backwards(self, state):
        stamps = iter(["2026-01-01T00:00:05Z", "2026-01-01T00:00:03Z", "2026-01-01T00:00:06Z"])
        state.pipeline._clock = lambda: next(stamps)
        for i in range(3):
            state.pipeline.submit_note(f"n{i}")
        assert [r["timestamp"] for r in ledger_records(state)] == [
            "2026-01-01T00:00:05Z",
            "2026-01-01T00:00:05Z",
            "2026-01-01T00:00:06Z",
        ]


class TestHostWiring:
    def test_attach_registers_all_hooks(self, state):
        host = FakeHost()
        state.pipeline.attach(host)
        assert set(host.handlers) == {"before_tool_call", "after_tool_call", "tool_result_persist"}
        host.handlers["before_tool_call"]({"toolName": "exec", "params": {"command": "pwd"}}, {"sessionKey": "s1"})
        host.handlers["tool_result_persist"]({"toolName": "exec"}, {"sessionKey": "s1"})
        assert ledger_records(state)[0]["summary"] == "pwd"

    def test_malformed_hook_payloads_do_not_raise(self, state):
        p = state.pipeline
        p.on_before_tool_call(None, None)
        p.on_tool_result_persist({"message": "not a dict"}, {"sessionKey": 3})
        p.on_after_tool_call({"params": ["odd"]}, {})

    def test_disabled_pipeline_ignores_hooks(self, make_config):
        st = TraceState(make_config(enabled=False))
        st.pipeline.on_before_tool_call({"toolName": "exec"}, {"sessionKey": "s1"})
        assert st.pipeline.on_tool_result_persist({"toolName": "exec"}, {"sessionKey": "s1"}) is None
        assert st.ledger.tail(10) == []
