#!/usr/bin/env python3
"""
Prompt optimizer CLI.
Usage: po <command> [options]   (po --help for the list)
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .core.config import settings
from .core.errors import PromptOptimizerError, ValidationError
from .core.llm import LlmGateway, describe_models
from .core.logging import configure_logging
from .core.storage import FileStorage
from .models import EvaluationResult
from .services.engine_service import EngineService
from .services.insight_service import (
    SUCCESS_RATE_ALERT,
    InsightService,
    render_improvement_notes,
    render_report_markdown,
)
from .services.log_service import LogService
from .services.prompt_version_service import PromptVersionService
from .services.scene_detector import CATEGORY_LABELS, get_scene_categories
from .services.workspace_service import DEFAULT_PROJECT_NAME, WorkspaceService

logger = logging.getLogger(__name__)

NOTES_PREVIEW_CHARS = 2000


class PromptOptimizerCLI:
    def __init__(self, workspace_dir: Path, log_dir: Optional[Path] = None, gateway: Optional[LlmGateway] = None):
        self.storage = FileStorage(lock_timeout=settings.STORAGE_LOCK_TIMEOUT)
        self.workspace = WorkspaceService(workspace_dir, self.storage)
        self.versions = PromptVersionService(self.workspace.prompts_dir, self.storage)
        self.logs = LogService(log_dir or workspace_dir / "logs", self.storage)
        self.gateway = gateway or LlmGateway(timeout=settings.LLM_TIMEOUT_SECONDS)
        self.engine = EngineService(self.gateway, self.logs, self.workspace, self.versions)

    def _read(self, path: str) -> str:
        return self.storage.read_text(path)

    # --- Operations ---

    def detect(self, args) -> int:
        logger.info("🔍 Detecting scene...")
        result = self.engine.detect(self._read(args.file), source=args.file)

        print(f"Scene:      {result.scene}")
        print(f"Confidence: {result.confidence * 100:.1f}%")
        print(f"Keywords:   {', '.join(result.keywords)}")

        if args.output:
            self.storage.write_json(args.output, result.to_dict())
            print(f"✅ Result saved to: {args.output}")
        return 0

    async def generate(self, args) -> int:
        options = _options(args, "data", "prompt", "scene", "output", "model")
        try:
            data = self._read(args.data)
            prompt = self._read(args.prompt)
        except PromptOptimizerError as e:
            self.engine.record_failure("generate", e, options)
            raise

        logger.info(f"📝 Generating summary with {args.model}...")
        outcome = await self.engine.generate(
            data,
            prompt,
            args.model,
            scene=args.scene,
            output=Path(args.output) if args.output else None,
            persist=True,
            options=options,
        )

        print(f"✅ Summary generated ({outcome.scene}):")
        print(f"   {outcome.output_path}")
        return 0

    async def evaluate(self, args) -> int:
        options = _options(args, "generated", "reference", "output", "model", "scene", "prompt")
        try:
            generated = self._read(args.generated)
            reference = self._read(args.reference)
        except PromptOptimizerError as e:
            self.engine.record_failure("evaluate", e, options)
            raise

        logger.info(f"📊 Evaluating with {args.model}...")
        outcome = await self.engine.evaluate(
            generated,
            reference,
            args.model,
            scene=args.scene,
            prompt_id=Path(args.prompt).name if args.prompt else None,
            generated_name=Path(args.generated).name,
            output=Path(args.output) if args.output else None,
            persist=True,
            options=options,
        )

        print(format_evaluation(outcome.result, outcome.scene))
        print(f"\n💾 Evaluation saved: {outcome.output_path}")
        return 0

    async def optimize(self, args) -> int:
        if args.save and not args.scene:
            raise ValidationError("Saving a version requires --scene")

        prompt = self._read(args.prompt)
        try:
            evaluation = json.loads(self._read(args.evaluation))
        except json.JSONDecodeError as e:
            raise ValidationError(f"Evaluation file is not valid JSON: {args.evaluation} ({e})")
        if not isinstance(evaluation, dict):
            raise ValidationError(f"Evaluation file must hold a JSON object: {args.evaluation}")

        logger.info(f"✨ Optimizing prompt (grade {evaluation.get('grade')}, total {evaluation.get('total')})...")
        outcome = await self.engine.optimize(
            prompt,
            evaluation,
            args.model,
            save_scene=args.scene if args.save else None,
            output=Path(args.output) if args.output else None,
            options=_options(args, "prompt", "evaluation", "output", "model", "save", "scene"),
        )

        if outcome.saved:
            print("✅ New version saved:")
            print(f"  Scene:   {args.scene}")
            print(f"  Version: {outcome.saved.id}")
            print(f"  Path:    {outcome.saved.path}")
        elif outcome.output_path:
            print(f"✅ Optimized prompt saved: {outcome.output_path}")
        else:
            print(outcome.result.content)
        return 0

    # --- Scenes / versions / workspace ---

    def scenes(self, args) -> int:
        for category, scenes in get_scene_categories().items():
            print(f"{CATEGORY_LABELS.get(category, category)}:")
            for scene in scenes:
                print(f"  - {scene}")
        return 0

    def version(self, args) -> int:
        if args.version_command == "list":
            versions = self.versions.list(args.scene)
            if not versions:
                print(f"No versions recorded for {args.scene}")
                return 0
            print(f"📋 {args.scene} versions:")
            for v in versions:
                note = f"  {v.note}" if v.note else ""
                print(f"  {v.id:<5} {v.modified.astimezone():%Y-%m-%d %H:%M:%S}{note}")
            return 0

        if args.version_command == "save":
            content = self._read(args.prompt)
            saved = self.versions.save(args.scene, content, args.message or "")
            print("✅ Version saved:")
            print(f"  Scene:   {args.scene}")
            print(f"  Version: {saved.id}")
            print(f"  Path:    {saved.path}")
            return 0

        # download
        path = self.versions.download(args.scene, args.version, Path(args.output))
        print(f"✅ Downloaded: {path}")
        return 0

    def init(self, args) -> int:
        created = self.workspace.init_dirs()
        written = self.workspace.write_scaffold(args.name or DEFAULT_PROJECT_NAME, force=args.force)

        print(f"🚀 Workspace initialized at {self.workspace.root.resolve()}")
        print(f"   {len(created)} directories created")
        for path in written:
            print(f"   created: {path.name}")
        print("\nNext steps:")
        print("  1. cp .env.example .env")
        print("  2. Fill in your API keys in .env")
        print("  3. po --help")
        return 0

    # --- Insight ---

    def insight(self, args) -> int:
        insights = InsightService(self.logs)
        report = insights.build_report(
            command=args.command_name,
            days=args.days,
            alert_threshold=args.alert,
            scene=args.scene,
        )
        stats = report.stats

        print("📈 Overview:")
        print(f"  Total commands: {stats.total_commands}")
        print(f"  Success:        {stats.success_count}")
        print(f"  Errors:         {stats.error_count}")
        print(f"  Avg duration:   {stats.avg_duration_ms}ms")
        print(f"  Success rate:   {report.success_rate:.1f}%")

        if report.below_threshold:
            print(f"\n⚠️  Success rate {report.success_rate:.1f}% is below the {report.alert_threshold:g}% threshold")

        if args.trend and report.trends:
            print("\n📈 Daily trend:")
            for t in report.trends:
                bar = "█" * int(t.success_rate / 10 + 0.5)
                print(f"  {t.date}: {bar} {t.success_rate}% ({t.success}/{t.total})")

        if report.distribution:
            print("\n🔍 Command distribution:")
            for command, count in report.distribution.items():
                print(f"  - {command}: {count}")

        errors = {name: items for name, items in report.error_categories.items() if items}
        if errors:
            print("\n❗ Errors:")
            for name, items in errors.items():
                print(f"  - {name}: {len(items)}")

        if report.scene_stats:
            print("\n🎯 Scenes:")
            for s in report.scene_stats:
                print(f"  - {s.scene}: {s.avg_score:.1f} ({s.count} evaluations)")

        if report.best_command:
            print(f"\n🏆 Best command: {report.best_command} ({report.best_command_rate:.1f}%)")
        if report.trend_note:
            print(f"📉 Trend: {report.trend_note}")

        print("\n💡 Suggestions:")
        for suggestion in report.suggestions or ["No obvious problems"]:
            print(f"  - {suggestion}")

        if args.output:
            path = self.storage.write_text(args.output, render_report_markdown(report))
            print(f"\n✅ Report saved: {path}")

        if args.notes or args.show_notes:
            notes = render_improvement_notes(report)
            if args.notes:
                path = self.storage.write_text(args.notes, notes)
                print(f"\n✅ Improvement notes saved: {path}")
            else:
                print("\n" + notes[:NOTES_PREVIEW_CHARS])
        return 0


def _options(args, *names) -> Dict[str, Any]:
    return {name: getattr(args, name, None) for name in names}


def format_evaluation(result: EvaluationResult, scene: Optional[str] = None) -> str:
    lines = ["✅ Evaluation:"]
    if scene:
        lines.append(f"  Scene: {scene}")
    lines += [
        f"  Total: {result.total} / 100",
        f"  Grade: {result.grade}",
        "  Scores:",
        f"    - Completeness:    {result.completeness}",
        f"    - Detail:          {result.detail}",
        f"    - Thoroughness:    {result.thoroughness}",
        f"    - Word count diff: {result.word_count_diff}",
    ]
    for title, items, marker in (
        ("Strengths", result.text_list("strengths"), "✅"),
        ("Weaknesses", result.text_list("weaknesses"), "⚠️"),
        ("Suggestions", result.text_list("suggestions"), "💡"),
    ):
        if items:
            lines.append(f"\n  {title}:")
            lines.extend(f"    {marker} {item}" for item in items)
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    models = ", ".join(m["key"] for m in describe_models())

    parser = argparse.ArgumentParser(
        prog="po",
        description="Iterate on meeting-summary prompts: detect, generate, evaluate, optimize",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  po detect dialogue/meeting.txt
  po generate -d dialogue/meeting.txt -p prompts/product/weekly/v1.md
  po evaluate -g outputs/product/weekly/summary.md -r reference.md
  po optimize -p prompts/product/weekly/v1.md -e evaluations/eval.json --save --scene product/weekly
  po insight --trend
        """
    )
    parser.add_argument(
        "--workspace",
        default=None,
        help=f"Workspace directory (default: WORKSPACE_DIR, currently '{settings.WORKSPACE_DIR}')."
    )
    parser.add_argument("--verbose", action="store_true", help="Debug logging on stderr.")

    sub = parser.add_subparsers(dest="command", metavar="<command>")
    sub.required = True

    p = sub.add_parser("detect", help="Detect the meeting scene of a dialogue file")
    p.add_argument("file", help="Dialogue file (TXT)")
    p.add_argument("-o", "--output", help="Write the result as JSON")

    p = sub.add_parser("generate", help="Generate a summary with a prompt")
    p.add_argument("-d", "--data", required=True, help="Dialogue file (TXT)")
    p.add_argument("-p", "--prompt", required=True, help="Prompt file (MD)")
    p.add_argument("-s", "--scene", help="Scene, e.g. product/weekly (auto-detected if omitted)")
    p.add_argument("-o", "--output", help="Output file (default: outputs/<scene>/<timestamp>.md)")
    p.add_argument("-m", "--model", default=settings.DEFAULT_MODEL, help=f"Model key ({models})")

    p = sub.add_parser("evaluate", help="Score a generated summary against a reference")
    p.add_argument("-g", "--generated", required=True, help="Generated summary (MD)")
    p.add_argument("-r", "--reference", required=True, help="Reference summary (MD)")
    p.add_argument("-o", "--output", help="Output file (JSON, default: evaluations/eval_<timestamp>.json)")
    p.add_argument("-m", "--model", default=settings.DEFAULT_MODEL, help=f"Judge model key ({models})")
    p.add_argument("-s", "--scene", help="Scene (auto-detected from the summary if omitted)")
    p.add_argument("-p", "--prompt", help="Prompt file used for the summary (recorded only)")

    p = sub.add_parser("optimize", help="Rewrite a prompt based on an evaluation")
    p.add_argument("-p", "--prompt", required=True, help="Prompt file (MD)")
    p.add_argument("-e", "--evaluation", required=True, help="Evaluation file (JSON)")
    p.add_argument("-o", "--output", help="Write the optimized prompt to a file")
    p.add_argument("-m", "--model", default=settings.DEFAULT_MODEL, help=f"Model key ({models})")
    p.add_argument("--save", action="store_true", help="Save as the next version (needs --scene)")
    p.add_argument("--scene", help="Scene to save the version under")

    sub.add_parser("scenes", help="List the supported scenes")

    p = sub.add_parser("version", help="Prompt version history")
    version_sub = p.add_subparsers(dest="version_command", metavar="<action>")
    version_sub.required = True
    vp = version_sub.add_parser("list", help="List the versions of a scene")
    vp.add_argument("scene")
    vp = version_sub.add_parser("save", help="Save a prompt file as the next version")
    vp.add_argument("-p", "--prompt", required=True, help="Prompt file (MD)")
    vp.add_argument("-s", "--scene", required=True)
    vp.add_argument("-m", "--message", help="Version note")
    vp = version_sub.add_parser("download", help="Copy one version to a file")
    vp.add_argument("-s", "--scene", required=True)
    vp.add_argument("-v", "--version", required=True, help="Version, e.g. v1 or 1")
    vp.add_argument("-o", "--output", required=True)

    p = sub.add_parser("init", help="Create the workspace layout")
    p.add_argument("name", nargs="?", help=f"Project name (default: {DEFAULT_PROJECT_NAME})")
    p.add_argument("-f", "--force", action="store_true", help="Overwrite README.md")

    p = sub.add_parser("insight", help="Statistics and suggestions from the command history")
    p.add_argument("-c", "--command", dest="command_name", help="Only this command")
    p.add_argument("-d", "--days", type=int, default=7, help="Days to look back (default: 7)")
    p.add_argument("-o", "--output", help="Write a Markdown report")
    p.add_argument("-t", "--trend", action="store_true", help="Show the daily trend")
    p.add_argument("-a", "--alert", type=float, default=SUCCESS_RATE_ALERT, help="Success rate alert threshold")
    p.add_argument("-s", "--scene", help="Only this scene in the evaluation stats")
    notes = p.add_mutually_exclusive_group()
    notes.add_argument("--notes", help="Write improvement notes (Markdown) to a file")
    notes.add_argument("--show-notes", action="store_true", help="Print improvement notes")

    p = sub.add_parser("serve", help="Run the REST API")
    p.add_argument("--host", default=None, help=f"Bind address (default: {settings.HOST})")
    p.add_argument("--port", type=int, default=None, help=f"Port (default: {settings.PORT})")

    return parser


def main(argv: Optional[List[str]] = None, gateway: Optional[LlmGateway] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "serve":
        from .main import run as run_server
        run_server(host=args.host, port=args.port)
        return 0

    configure_logging(
        log_level="DEBUG" if args.verbose else settings.LOG_LEVEL,
        json_format=False,
        stream=sys.stderr,
    )

    workspace_dir = Path(args.workspace) if args.workspace else settings.workspace_path
    log_dir = settings.log_path if settings.LOG_DIR and not args.workspace else None

    try:
        cli = PromptOptimizerCLI(workspace_dir, log_dir=log_dir, gateway=gateway)
        handler = getattr(cli, args.command)
        result = handler(args)
        if asyncio.iscoroutine(result):
            result = asyncio.run(result)
        return result
    except (PromptOptimizerError, OSError) as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        return 1


def run():
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        logger.info("\n⏹️  Interrupted by user")
        sys.exit(130)


if __name__ == "__main__":
    run()
