"""
Stdin invoker tests: one JSON result on stdout and the exit code contract.
"""

import io
import json
from unittest.mock import MagicMock, patch

import pytest

from envelope_sync.config import PipelineConfig, StateStatus
from envelope_sync.invoker import main, run_once
from envelope_sync.services.memory_store import InMemoryRecordStore
from envelope_sync.services.webhook_processor import WebhookProcessor


def _make_factory(store):
    config = PipelineConfig(completed=StateStatus(state=1, status=100))
    return lambda: WebhookProcessor(store, config)


def _make_line(**overrides) -> str:
    payload = {"event": "envelope-sent", "envelopeId": "E1"}
    payload.update(overrides)
    return json.dumps(payload) + "\n"


def _run(text: str, factory):
    stdout = io.StringIO()
    code = run_once(text, factory, stdout)
    lines = stdout.getvalue().splitlines()
    assert len(lines) == 1
    return code, json.loads(lines[0])


class TestRunOnce:

    def test_handled_event_exits_zero(self):
        store = InMemoryRecordStore()
        store.seed("signature_requests", {"envelope_id": "E1"})

        code, output = _run(_make_line(), _make_factory(store))

        assert code == 0
        assert output == {
            "ok": True,
            "source": "crm",
            "where": "execute",
            "handled": "unhandled",
            "envelopeId": "E1",
        }

    def test_invalid_json_exits_one_without_building_processor(self):
        factory = MagicMock()

        code, output = _run("{oops", factory)

        assert code == 1
        assert output["ok"] is False
        assert output["source"] == "crm"
        assert output["where"] == "parse-stdin"
        factory.assert_not_called()

    def test_missing_envelope_id_exits_one(self):
        factory = MagicMock()

        code, output = _run(json.dumps({"event": "envelope-completed"}), factory)

        assert code == 1
        assert output["where"] == "input"
        factory.assert_not_called()

    @pytest.mark.parametrize(
        "payload",
        [
            {"event": "envelope-completed", "data": "oops"},
            {"event": "envelope-completed", "data": [1]},
            {"body": json.dumps([1])},
        ],
    )
    def test_wrong_typed_nesting_exits_one(self, payload):
        factory = MagicMock()

        code, output = _run(json.dumps(payload), factory)

        assert code == 1
        assert output["ok"] is False
        assert output["where"] == "input"
        factory.assert_not_called()

    def test_wrong_typed_summary_is_still_processed(self):
        store = InMemoryRecordStore()
        store.seed("signature_requests", {"envelope_id": "E1"})
        line = json.dumps(
            {"event": "envelope-sent", "data": {"envelopeId": "E1", "envelopeSummary": "oops"}}
        )

        code, output = _run(line, _make_factory(store))

        assert code == 0
        assert output["envelopeId"] == "E1"

    def test_target_not_found_exits_two(self):
        code, output = _run(_make_line(), _make_factory(InMemoryRecordStore()))

        assert code == 2
        assert output["ok"] is False
        assert output["where"] == "locate"
        assert output["error"] == "target not found"
        assert output["envelopeId"] == "E1"

    def test_unconfigured_store_exits_two(self):
        def factory():
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set in environment variables")

        code, output = _run(_make_line(), factory)

        assert code == 2
        assert output["where"] == "execute"
        assert "SUPABASE_URL" in output["error"]


class TestMain:

    def test_reads_stdin_and_returns_exit_code(self):
        store = InMemoryRecordStore()
        store.seed("signature_requests", {"envelope_id": "E1"})
        stdout = io.StringIO()

        with patch("envelope_sync.invoker.build_processor", _make_factory(store)), \
             patch("sys.stdin", io.StringIO(_make_line())), \
             patch("sys.stdout", stdout):
            code = main(["--stdin"])

        assert code == 0
        assert json.loads(stdout.getvalue())["ok"] is True

    def test_reads_file(self, tmp_path):
        event_file = tmp_path / "event.json"
        event_file.write_text(_make_line(), encoding="utf-8")
        stdout = io.StringIO()

        with patch("envelope_sync.invoker.build_processor", _make_factory(InMemoryRecordStore())), \
             patch("sys.stdout", stdout):
            code = main(["--file", str(event_file)])

        assert code == 2
        assert json.loads(stdout.getvalue())["where"] == "locate"

    def test_unreadable_file_exits_one(self, tmp_path):
        stdout = io.StringIO()

        with patch("sys.stdout", stdout):
            code = main(["--file", str(tmp_path / "missing.json")])

        assert code == 1
        assert json.loads(stdout.getvalue())["where"] == "parse-stdin"

    def test_file_with_invalid_utf8_exits_one(self, tmp_path):
        event_file = tmp_path / "bad.json"
        event_file.write_bytes(b"\xff\xfe{\"event\": ")
        factory = MagicMock()
        stdout = io.StringIO()

        with patch("envelope_sync.invoker.build_processor", factory), \
             patch("sys.stdout", stdout):
            code = main(["--file", str(event_file)])

        lines = stdout.getvalue().splitlines()
        assert code == 1
        assert len(lines) == 1
        assert json.loads(lines[0])["where"] == "parse-stdin"
        factory.assert_not_called()

    def test_stdin_with_invalid_utf8_exits_one(self):
        stdin = io.TextIOWrapper(io.BytesIO(b"\xff\xfe{"), encoding="utf-8")
        stdout = io.StringIO()

        with patch("sys.stdin", stdin), patch("sys.stdout", stdout):
            code = main([])

        assert code == 1
        assert json.loads(stdout.getvalue())["where"] == "parse-stdin"
