import json
import logging
import time
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from ..core.storage import FileStorage
from ..models import (
    CommandStats,
    EvaluationRecord,
    LogEntry,
    LogInput,
    LogOutput,
    SceneEvaluationStats,
)

logger = logging.getLogger(__name__)

LOG_SUBDIRS = ("commands", "evaluations", "analysis")
LEGACY_TOTAL_KEY = "总分"
DEFAULT_QUERY_LIMIT = 100


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_timestamp(moment: Optional[datetime] = None) -> str:
    moment = moment or utc_now()
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _file_date(filename: str) -> Optional[date]:
    """``generate_2026-10-18.jsonl`` / ``2026-10-18.jsonl`` -> date(2026, 10, 18)."""
    stem = Path(filename).stem
    try:
        return date.fromisoformat(stem[-10:])
    except ValueError:
        return None


class LogService:
    """
    Append-only, date-partitioned record of command invocations and evaluations.

    One instance tracks at most one in-flight command: ``start`` opens it,
    ``end`` finalizes and appends it. Create one instance per invocation (the
    CLI does, the API does per request); reads can go through any instance.
    """

    def __init__(self, log_dir: Path, storage: Optional[FileStorage] = None):
        self.log_dir = Path(log_dir)
        self.storage = storage or FileStorage()
        self.commands_dir = self.log_dir / "commands"
        self.evaluations_dir = self.log_dir / "evaluations"
        self._current: Optional[LogEntry] = None
        self._started_at = 0.0
        self._ensure_dirs()

    def _ensure_dirs(self):
        for name in LOG_SUBDIRS:
            self.storage.ensure_dir(self.log_dir / name)

    # --- Writing ---

    @property
    def pending(self) -> Optional[LogEntry]:
        return self._current

    def start(self, command: str, args: Sequence[str] = (), options: Optional[Dict[str, Any]] = None) -> LogEntry:
        if self._current is not None:
            raise RuntimeError(f"Command '{self._current.command}' is still in flight")

        self._started_at = time.monotonic()
        self._current = LogEntry(
            timestamp=iso_timestamp(),
            command=command,
            input=LogInput(args=[str(a) for a in args], options=_jsonable(options or {})),
            status="pending",
        )
        return self._current

    def end(self, success: bool, data: Any = None, error: Optional[str] = None) -> Optional[LogEntry]:
        if self._current is None:
            logger.debug("LogService.end called without a pending command")
            return None

        entry = self._current
        entry.output = LogOutput(
            success=success,
            data=_jsonable(data),
            error=error,
            duration_ms=int((time.monotonic() - self._started_at) * 1000),
        )
        entry.status = "success" if success else "error"

        filename = f"{entry.command}_{utc_now().date().isoformat()}.jsonl"
        self.storage.append_text(self.commands_dir / filename, entry.model_dump_json() + "\n")
        self._current = None
        return entry

    def save_evaluation(self, record: EvaluationRecord) -> Path:
        filename = f"{utc_now().date().isoformat()}.jsonl"
        line = json.dumps(record.to_dict(), ensure_ascii=False)
        return self.storage.append_text(self.evaluations_dir / filename, line + "\n")

    # --- Reading ---

    def _files(self, directory: Path, days: Optional[int] = None) -> List[Path]:
        if not directory.is_dir():
            return []
        files = [item.path for item in self.storage.list_dir(directory, extensions=["jsonl"])]
        if days is None:
            return files

        cutoff = utc_now().date() - timedelta(days=max(days, 1) - 1)
        selected = []
        for path in files:
            file_date = _file_date(path.name)
            if file_date is not None and file_date >= cutoff:
                selected.append(path)
        return selected

    def _read_lines(self, path: Path) -> Iterator[Dict[str, Any]]:
        for line in self.storage.read_text(path).splitlines():
            if not line.strip():
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError:
                logger.debug(f"Skipping unparsable log line in {path.name}")

    def _iter_entries(self, days: Optional[int] = None) -> Iterator[LogEntry]:
        for path in self._files(self.commands_dir, days):
            for raw in self._read_lines(path):
                # Older lines stored the duration under "duration"
                output = raw.get("output")
                if isinstance(output, dict) and "duration_ms" not in output and "duration" in output:
                    output["duration_ms"] = output.pop("duration")
                try:
                    yield LogEntry.model_validate(raw)
                except PydanticValidationError:
                    logger.debug(f"Skipping malformed log entry in {path.name}")

    def query(
        self,
        command: Optional[str] = None,
        status: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        limit: Optional[int] = DEFAULT_QUERY_LIMIT,
    ) -> List[LogEntry]:
        """
        Matching entries in timestamp order, at most ``limit`` of the most recent.
        ``start_date`` / ``end_date`` compare against the ISO timestamp string.
        """
        results = []
        for entry in self._iter_entries():
            if command and entry.command != command:
                continue
            if status and entry.status != status:
                continue
            if start_date and entry.timestamp < start_date:
                continue
            if end_date and entry.timestamp > end_date:
                continue
            results.append(entry)

        results.sort(key=lambda e: e.timestamp)
        if limit:
            return results[-limit:]
        return results

    def get_stats(self, command: Optional[str] = None, days: int = 7) -> CommandStats:
        """Counters over the command files of the last ``days`` calendar days."""
        stats = CommandStats()
        total_duration = 0

        for entry in self._iter_entries(days):
            if command and entry.command != command:
                continue
            stats.total_commands += 1
            if entry.status == "success":
                stats.success_count += 1
            elif entry.status == "error":
                stats.error_count += 1
            total_duration += entry.duration_ms

        if stats.total_commands:
            stats.avg_duration_ms = round_half_up(total_duration / stats.total_commands)
        return stats

    def get_evaluations(self, scene: Optional[str] = None, days: int = 7) -> List[EvaluationRecord]:
        records = []
        for path in self._files(self.evaluations_dir, days):
            for raw in self._read_lines(path):
                try:
                    record = EvaluationRecord.model_validate(raw)
                except PydanticValidationError:
                    logger.debug(f"Skipping malformed evaluation record in {path.name}")
                    continue
                if scene and record.scene != scene:
                    continue
                records.append(record)
        return records

    def get_evaluation_stats(self, scene: Optional[str] = None, days: int = 7) -> List[SceneEvaluationStats]:
        """Per-scene evaluation count, mean total score and every observed metric value."""
        by_scene: Dict[str, Dict[str, Any]] = {}

        for record in self.get_evaluations(scene, days):
            bucket = by_scene.setdefault(record.scene, {"count": 0, "total": 0.0, "scores": {}})
            bucket["count"] += 1
            bucket["total"] += record.scores.get("total") or record.scores.get(LEGACY_TOTAL_KEY) or 0
            for key, value in record.scores.items():
                bucket["scores"].setdefault(key, []).append(value)

        return [
            SceneEvaluationStats(
                scene=name,
                count=data["count"],
                avg_score=data["total"] / data["count"] if data["count"] else 0.0,
                scores=data["scores"],
            )
            for name, data in by_scene.items()
        ]


def round_half_up(value: float) -> int:
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


def _jsonable(value: Any) -> Any:
    """Make CLI options / command results safe for a JSON line."""
    if value is None:
        return None
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json", by_alias=True)
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        if isinstance(value, dict):
            return {str(k): _jsonable(v) for k, v in value.items()}
        if isinstance(value, (list, tuple, set)):
            return [_jsonable(v) for v in value]
        return str(value)
