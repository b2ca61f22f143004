import logging
from typing import Dict, Iterable, List, Optional, Tuple

from ..models import CommandStats, DailyTrend, InsightReport, LogEntry, SceneEvaluationStats
from .log_service import LogService, iso_timestamp, round_half_up

logger = logging.getLogger(__name__)

# Decision table thresholds
SUCCESS_RATE_ALERT = 80
SLOW_AVG_DURATION_MS = 30_000
LOW_SCENE_SCORE = 70
WORST_COMMAND_MIN_SAMPLES = 2  # strictly more samples than this
TREND_DELTA = 10

RECENT_LOG_LIMIT = 50
TREND_LOG_LIMIT = 500

ERROR_CATEGORIES: Dict[str, Tuple[str, ...]] = {
    "timeout": ("timeout", "timed out", "超时"),
    "format": ("format", "JSON", "格式"),
    "low_score": ("low", "低"),
}


class InsightService:
    """Statistics and rule-based improvement suggestions over the log store."""

    def __init__(self, log_service: LogService):
        self.logs = log_service

    def daily_trends(self, command: Optional[str] = None, days: int = 7, entries: Optional[List[LogEntry]] = None) -> List[DailyTrend]:
        """Per-UTC-day totals, ascending by date, trailing ``days`` days."""
        if entries is None:
            entries = self.logs.query(command=command, limit=TREND_LOG_LIMIT)

        by_date: Dict[str, Dict[str, int]] = {}
        for entry in entries:
            bucket = by_date.setdefault(entry.date, {"total": 0, "success": 0, "error": 0, "duration": 0})
            bucket["total"] += 1
            if entry.status == "success":
                bucket["success"] += 1
            else:
                bucket["error"] += 1
            bucket["duration"] += entry.duration_ms

        trends = [
            DailyTrend(
                date=day,
                total=data["total"],
                success=data["success"],
                error=data["error"],
                success_rate=round_half_up(data["success"] / data["total"] * 100) if data["total"] else 0,
                avg_duration_ms=round_half_up(data["duration"] / data["total"]) if data["total"] else 0,
            )
            for day, data in by_date.items()
        ]
        trends.sort(key=lambda t: t.date)
        return trends[-days:] if days > 0 else trends

    def evaluation_stats(self, scene: Optional[str] = None, days: int = 7) -> List[SceneEvaluationStats]:
        return self.logs.get_evaluation_stats(scene, days)

    @staticmethod
    def command_distribution(entries: Iterable[LogEntry]) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for entry in entries:
            counts[entry.command] = counts.get(entry.command, 0) + 1
        return counts

    @staticmethod
    def command_success(entries: Iterable[LogEntry]) -> Dict[str, Dict[str, int]]:
        per_command: Dict[str, Dict[str, int]] = {}
        for entry in entries:
            bucket = per_command.setdefault(entry.command, {"success": 0, "total": 0})
            bucket["total"] += 1
            if entry.status == "success":
                bucket["success"] += 1
        return per_command

    def best_command(self, entries: Iterable[LogEntry]) -> Optional[Tuple[str, float]]:
        """Command with the highest success rate (percent); first seen wins ties."""
        best: Optional[Tuple[str, float]] = None
        for command, data in self.command_success(entries).items():
            rate = data["success"] / data["total"] * 100
            if rate > 0 and (best is None or rate > best[1]):
                best = (command, rate)
        return best

    def worst_command(self, entries: Iterable[LogEntry]) -> Optional[Tuple[str, float]]:
        """Lowest success rate among commands with more than two samples."""
        worst: Optional[Tuple[str, float]] = None
        for command, data in self.command_success(entries).items():
            if data["total"] <= WORST_COMMAND_MIN_SAMPLES:
                continue
            rate = data["success"] / data["total"] * 100
            if rate < 100 and (worst is None or rate < worst[1]):
                worst = (command, rate)
        return worst

    @staticmethod
    def categorize_errors(entries: Iterable[LogEntry]) -> Dict[str, List[str]]:
        categories: Dict[str, List[str]] = {name: [] for name in ERROR_CATEGORIES}
        categories["other"] = []

        for entry in entries:
            if entry.status != "error":
                continue
            message = entry.error or "Unknown"
            for name, markers in ERROR_CATEGORIES.items():
                if any(marker in message for marker in markers):
                    categories[name].append(entry.command)
                    break
            else:
                categories["other"].append(f"{entry.command}: {message[:30]}")

        return categories

    def suggestions(
        self,
        stats: CommandStats,
        entries: List[LogEntry],
        scene_stats: List[SceneEvaluationStats],
    ) -> List[str]:
        suggestions = []

        if stats.total_commands and stats.success_rate < SUCCESS_RATE_ALERT:
            suggestions.append("Success rate is low: check the error logs and add handling for the failing cases")

        if stats.avg_duration_ms > SLOW_AVG_DURATION_MS:
            suggestions.append("Average duration is long: optimize the prompt or switch to a faster model")

        worst = self.worst_command(entries)
        if worst:
            command, rate = worst
            suggestions.append(f"'{command}' has the lowest success rate ({rate:.1f}%): review the prompts it uses")

        low_scenes = [s.scene for s in scene_stats if s.avg_score < LOW_SCENE_SCORE]
        if low_scenes:
            suggestions.append(f"Low evaluation scores for: {', '.join(low_scenes)}; optimize the prompts of these scenes")

        return suggestions

    @staticmethod
    def trend_note(trends: List[DailyTrend]) -> Optional[str]:
        if len(trends) < 2:
            return None
        delta = trends[-1].success_rate - trends[0].success_rate
        if delta > TREND_DELTA:
            return f"Improving: success rate up {delta:.1f} points"
        if delta < -TREND_DELTA:
            return f"Declining: success rate down {abs(delta):.1f} points"
        return "Stable"

    def build_report(
        self,
        command: Optional[str] = None,
        days: int = 7,
        alert_threshold: float = SUCCESS_RATE_ALERT,
        scene: Optional[str] = None,
    ) -> InsightReport:
        stats = self.logs.get_stats(command, days)
        recent = self.logs.query(command=command, limit=RECENT_LOG_LIMIT)
        trends = self.daily_trends(command, days)
        scene_stats = self.evaluation_stats(scene, days)
        best = self.best_command(recent)

        logger.info(f"📊 Insight over {days} days: {stats.total_commands} commands, {len(scene_stats)} scenes evaluated")

        return InsightReport(
            generated_at=iso_timestamp(),
            command=command,
            days=days,
            stats=stats,
            success_rate=round(stats.success_rate, 1),
            alert_threshold=alert_threshold,
            below_threshold=stats.total_commands > 0 and stats.success_rate < alert_threshold,
            trends=trends,
            distribution=self.command_distribution(recent),
            error_categories=self.categorize_errors(recent),
            scene_stats=scene_stats,
            suggestions=self.suggestions(stats, recent, scene_stats),
            best_command=best[0] if best else None,
            best_command_rate=round(best[1], 1) if best else None,
            trend_note=self.trend_note(trends),
        )


def render_report_markdown(report: InsightReport) -> str:
    stats = report.stats
    lines = [
        "# Prompt Optimizer Report",
        "",
        "## Overview",
        "",
        f"- Total commands: {stats.total_commands}",
        f"- Success: {stats.success_count}",
        f"- Errors: {stats.error_count}",
        f"- Success rate: {report.success_rate:.1f}%",
        f"- Average duration: {stats.avg_duration_ms}ms",
        "",
        "## Command distribution",
        "",
    ]
    lines.extend(f"- {cmd}: {count}" for cmd, count in report.distribution.items())

    if report.trends:
        lines += ["", "## Daily trend", "", "| Date | Total | Success | Rate | Avg ms |", "|---|---|---|---|---|"]
        lines.extend(
            f"| {t.date} | {t.total} | {t.success} | {t.success_rate}% | {t.avg_duration_ms} |" for t in report.trends
        )

    if report.scene_stats:
        lines += ["", "## Scenes", ""]
        lines.extend(f"- {s.scene}: {s.avg_score:.1f} ({s.count} evaluations)" for s in report.scene_stats)

    lines += ["", "## Suggestions", ""]
    lines.extend(f"- {s}" for s in report.suggestions or ["No obvious problems"])
    lines += ["", f"Generated at: {report.generated_at}", ""]
    return "\n".join(lines)


def render_improvement_notes(report: InsightReport) -> str:
    """Markdown notes meant to be dropped next to the prompts as guidance."""
    stats = report.stats
    lines = [
        "# Prompt Optimizer: Improvement Notes",
        "",
        "> Generated from the command and evaluation history",
        f"> Generated at: {report.generated_at}",
        "",
        "## Overall",
        "",
        f"- Success rate: {report.success_rate:.1f}%",
        f"- Average duration: {stats.avg_duration_ms}ms",
        f"- Total commands: {stats.total_commands}",
        "",
        "## Suggestions",
        "",
    ]
    lines.extend(f"- {s}" for s in report.suggestions or ["No obvious problems, keep going"])

    lines += ["", "## Trend", ""]
    lines.append(f"- {report.trend_note}" if report.trend_note else "- Not enough history yet")
    lines += ["", "---", "*Generated by `po insight --notes`*", ""]
    return "\n".join(lines)
