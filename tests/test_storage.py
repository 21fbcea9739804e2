"""Tests for event journals and persisted reports."""

import json

import pytest

from pipetrace.storage.atomic import atomic_write_json, read_json
from pipetrace.storage.journal import StageEvent, append_events, event_from_dict, iter_events
from pipetrace.storage.reports import REPORT_SCHEMA, read_report, write_report


class TestJournal:
    """Test JSONL event journals."""

    def test_append_then_iterate(self, tmp_path):
        path = tmp_path / "nested" / "events.jsonl"
        events = [
            StageEvent("a", "ingest", 0),
            StageEvent("a", "transform", 12, delivered_at=30),
        ]
        assert append_events(path, events) == 2
        assert append_events(path, [StageEvent("b", "ingest", 5)]) == 1

        loaded = list(iter_events(path))
        assert loaded[:2] == events
        assert loaded[1].delivery_time == 30
        assert len(loaded) == 3

    def test_blank_lines_are_skipped(self, tmp_path):
        path = tmp_path / "events.jsonl"
        path.write_text('\n{"trace_id": "a", "stage": "ingest", "ts": 1}\n\n', encoding="utf-8")
        assert [event.trace_id for event in iter_events(path)] == ["a"]

    def test_malformed_line_reports_location(self, tmp_path):
        path = tmp_path / "events.jsonl"
        path.write_text('{"trace_id": "a", "stage": "ingest", "ts": 1}\nnot json\n', encoding="utf-8")
        with pytest.raises(ValueError, match=r"events\.jsonl:2"):
            list(iter_events(path))

    @pytest.mark.parametrize(
        "payload",
        [
            [],
            {"stage": "ingest", "ts": 1},
            {"trace_id": "a", "stage": "", "ts": 1},
            {"trace_id": "a", "stage": "ingest", "ts": -1},
            {"trace_id": "a", "stage": "ingest", "ts": True},
            {"trace_id": "a", "stage": "ingest", "ts": 1, "delivered_at": "soon"},
        ],
    )
    def test_invalid_events_rejected(self, payload):
        with pytest.raises(ValueError):
            event_from_dict(payload)


class TestReports:
    """Test report envelopes and atomic writes."""

    def test_write_then_read(self, tmp_path, make_engine):
        engine = make_engine()
        engine.recorder.on_stage_arrival("t", "ingest", 0)
        engine.recorder.on_stage_arrival("t", "transform", 4)
        engine.recorder.on_stage_arrival("t", "sink", 9)
        view = engine.report()

        path = write_report(tmp_path / "report.json", view, run={"run_id": "abc"})
        loaded, envelope = read_report(path)

        assert envelope["schema"] == REPORT_SCHEMA
        assert envelope["run"] == {"run_id": "abc"}
        assert loaded.to_dict() == view.to_dict()
        assert loaded.end_to_end.max == 9

    def test_unknown_schema_rejected(self, tmp_path):
        path = tmp_path / "report.json"
        path.write_text(json.dumps({"schema": "report/v0", "report": {}}), encoding="utf-8")
        with pytest.raises(ValueError):
            read_report(path)

    def test_non_object_report_rejected(self, tmp_path):
        path = tmp_path / "report.json"
        path.write_text(json.dumps([1, 2]), encoding="utf-8")
        with pytest.raises(TypeError):
            read_report(path)

    def test_atomic_write_leaves_no_temp_files(self, tmp_path):
        target = tmp_path / "out.json"
        atomic_write_json(target, {"b": 1, "a": [1, 2]})
        atomic_write_json(target, {"a": 2})

        assert read_json(target) == {"a": 2}
        assert [path.name for path in tmp_path.iterdir()] == ["out.json"]
