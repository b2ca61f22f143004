import json
from datetime import timedelta

import pytest

from conftest import command_line, write_jsonl
from prompt_optimizer.models import EvaluationRecord
from prompt_optimizer.services.log_service import LogService, iso_timestamp, round_half_up, utc_now


def today() -> str:
    return utc_now().date().isoformat()


def days_ago(n: int) -> str:
    return (utc_now().date() - timedelta(days=n)).isoformat()


def test_creates_subdirectories(log_service):
    for name in ("commands", "evaluations", "analysis"):
        assert (log_service.log_dir / name).is_dir()


def test_start_end_appends_one_line(log_service):
    log_service.start("generate", ["a.txt"], {"model": "qwen-max"})
    assert log_service.pending.status == "pending"

    entry = log_service.end(True, {"outputPath": "out.md"})

    assert entry.status == "success"
    assert entry.output.duration_ms >= 0
    assert log_service.pending is None

    path = log_service.commands_dir / f"generate_{today()}.jsonl"
    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    record = json.loads(lines[0])
    assert record["command"] == "generate"
    assert record["input"] == {"args": ["a.txt"], "options": {"model": "qwen-max"}}
    assert record["output"]["data"] == {"outputPath": "out.md"}
    assert record["status"] == "success"


def test_error_entry(log_service):
    log_service.start("evaluate")
    entry = log_service.end(False, error="boom")

    assert entry.status == "error"
    assert entry.error == "boom"


def test_end_without_start_is_a_noop(log_service):
    assert log_service.end(True) is None
    assert list(log_service.commands_dir.iterdir()) == []


def test_only_one_entry_in_flight(log_service):
    log_service.start("detect")

    with pytest.raises(RuntimeError):
        log_service.start("generate")


def test_non_json_options_are_stringified(log_service, tmp_path):
    log_service.start("generate", [], {"output": tmp_path / "out.md"})
    entry = log_service.end(True)

    assert entry.input.options["output"] == str(tmp_path / "out.md")


def test_save_evaluation(log_service):
    record = EvaluationRecord(prompt_id="v1.md", scene="product/weekly", scores={"total": 82}, summary="A", timestamp=iso_timestamp())

    path = log_service.save_evaluation(record)

    assert path.name == f"{today()}.jsonl"
    stored = json.loads(path.read_text(encoding="utf-8"))
    assert stored["promptId"] == "v1.md"
    assert stored["scores"] == {"total": 82}


def test_query_returns_most_recent_in_timestamp_order(log_service):
    commands = log_service.commands_dir
    # Files listed alphabetically would put "detect" before "generate"
    write_jsonl(commands / f"generate_{days_ago(1)}.jsonl", [
        command_line("generate", f"{days_ago(1)}T10:00:00.000Z"),
        command_line("generate", f"{days_ago(1)}T12:00:00.000Z", status="error", error="timeout"),
    ])
    write_jsonl(commands / f"detect_{today()}.jsonl", [
        command_line("detect", f"{today()}T08:00:00.000Z"),
    ])
    write_jsonl(commands / f"detect_{days_ago(2)}.jsonl", [
        command_line("detect", f"{days_ago(2)}T08:00:00.000Z"),
    ])

    entries = log_service.query(limit=2)
    assert [e.timestamp for e in entries] == [f"{days_ago(1)}T12:00:00.000Z", f"{today()}T08:00:00.000Z"]

    assert len(log_service.query()) == 4
    assert [e.command for e in log_service.query(command="detect")] == ["detect", "detect"]
    assert [e.error for e in log_service.query(status="error")] == ["timeout"]
    assert len(log_service.query(start_date=today())) == 1
    assert len(log_service.query(end_date=days_ago(1) + "T11")) == 2


def test_query_skips_unparsable_lines(log_service):
    path = log_service.commands_dir / f"detect_{today()}.jsonl"
    write_jsonl(path, [command_line("detect", f"{today()}T08:00:00.000Z")])
    with open(path, "a", encoding="utf-8") as fh:
        fh.write("{broken json\n\n")
        fh.write(json.dumps({"no": "timestamp"}) + "\n")

    assert len(log_service.query()) == 1


def test_legacy_duration_key(log_service):
    line = command_line("detect", f"{today()}T08:00:00.000Z")
    line["output"]["duration"] = line["output"].pop("duration_ms") * 3
    write_jsonl(log_service.commands_dir / f"detect_{today()}.jsonl", [line])

    assert log_service.query()[0].duration_ms == 300


def test_stats_on_empty_store(log_service):
    stats = log_service.get_stats()

    assert stats.to_dict() == {"totalCommands": 0, "successCount": 0, "errorCount": 0, "avgDurationMs": 0}


def test_stats_use_calendar_window(log_service):
    commands = log_service.commands_dir
    write_jsonl(commands / f"generate_{today()}.jsonl", [
        command_line("generate", f"{today()}T01:00:00.000Z", duration_ms=100),
        command_line("generate", f"{today()}T02:00:00.000Z", status="error", duration_ms=201),
    ])
    write_jsonl(commands / f"detect_{days_ago(3)}.jsonl", [
        command_line("detect", f"{days_ago(3)}T01:00:00.000Z", duration_ms=50),
    ])
    write_jsonl(commands / f"detect_{days_ago(10)}.jsonl", [
        command_line("detect", f"{days_ago(10)}T01:00:00.000Z", duration_ms=5000),
    ])

    week = log_service.get_stats(days=7)
    assert (week.total_commands, week.success_count, week.error_count) == (3, 2, 1)
    assert week.avg_duration_ms == 117

    assert log_service.get_stats(days=1).total_commands == 2
    assert log_service.get_stats(command="detect", days=30).total_commands == 2


def test_evaluation_stats_average_total_with_legacy_key(log_service):
    write_jsonl(log_service.evaluations_dir / f"{today()}.jsonl", [
        {"promptId": "a", "scene": "product/weekly", "scores": {"total": 80, "detail": 70}, "summary": "A", "timestamp": iso_timestamp()},
        {"promptId": "b", "scene": "product/weekly", "scores": {"总分": 60}, "summary": "C", "timestamp": iso_timestamp()},
        {"promptId": "c", "scene": "hr/exit", "scores": {"detail": 50}, "summary": "D", "timestamp": iso_timestamp()},
    ])

    stats = {s.scene: s for s in log_service.get_evaluation_stats()}

    assert stats["product/weekly"].count == 2
    assert stats["product/weekly"].avg_score == 70
    assert stats["product/weekly"].scores["detail"] == [70]
    assert stats["hr/exit"].avg_score == 0
    assert [s.scene for s in log_service.get_evaluation_stats(scene="hr/exit")] == ["hr/exit"]


def test_round_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(116.67) == 117
    assert round_half_up(0.49) == 0
