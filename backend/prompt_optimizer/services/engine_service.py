import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Optional, Sequence, Union

from ..core.config import settings
from ..core.llm import LlmGateway
from ..models import (
    DetectionResult,
    EvaluationOutcome,
    EvaluationRecord,
    EvaluationResult,
    GenerationOutcome,
    OptimizationOutcome,
)
from . import scene_detector
from .log_service import LogService, iso_timestamp
from .prompt_version_service import PromptVersionService
from .workspace_service import WorkspaceService

logger = logging.getLogger(__name__)

OPTIMIZE_VERSION_NOTE = "Optimized from evaluation results"
INLINE_PROMPT_ID = "inline"


class EngineService:
    """
    Runs one detect / generate / evaluate / optimize operation and records it
    in the log store. Shared by the CLI and the API.

    Holds one LogService, so an instance runs one operation at a time.
    """

    def __init__(
        self,
        gateway: LlmGateway,
        log_service: LogService,
        workspace: WorkspaceService,
        versions: PromptVersionService,
    ):
        self.gateway = gateway
        self.logs = log_service
        self.workspace = workspace
        self.versions = versions

    @contextmanager
    def _logged(self, command: str, args: Sequence[str] = (), options: Optional[Dict[str, Any]] = None) -> Iterator[Dict[str, Any]]:
        """Opens a log entry; the block fills ``outcome["data"]``. Failures are recorded and re-raised."""
        self.logs.start(command, args, options)
        outcome: Dict[str, Any] = {}
        try:
            yield outcome
        except Exception as e:
            self.logs.end(False, error=str(e))
            logger.error(f"❌ {command} failed: {e}")
            raise
        self.logs.end(True, outcome.get("data"))

    def record_failure(self, command: str, error: Exception, options: Optional[Dict[str, Any]] = None):
        """Logs a command that failed before the operation itself could start (e.g. a missing input file)."""
        self.logs.start(command, [], options)
        self.logs.end(False, error=str(error))

    def detect(self, content: str, source: Optional[str] = None) -> DetectionResult:
        with self._logged("detect", [source] if source else []) as outcome:
            result = scene_detector.detect(content)
            outcome["data"] = result
        logger.info(f"🔍 Detected {result.scene} ({result.confidence:.0%})")
        return result

    async def generate(
        self,
        data: str,
        prompt: str,
        model: str = settings.DEFAULT_MODEL,
        scene: Optional[str] = None,
        output: Optional[Path] = None,
        persist: bool = False,
        options: Optional[Dict[str, Any]] = None,
    ) -> GenerationOutcome:
        """
        Summarize ``data`` with ``prompt``. The scene is detected from the
        dialogue when not given. The summary is written to ``output`` if set,
        else under ``outputs/<scene>/`` when ``persist`` is true.
        """
        options = options if options is not None else {"scene": scene, "model": model}
        with self._logged("generate", [], options) as outcome:
            if not scene:
                scene = scene_detector.detect(data).scene
                logger.info(f"🔍 Auto-detected scene: {scene}")

            result = await self.gateway.generate(data, prompt, model)

            output_path = None
            if output:
                self.workspace.storage.write_text(output, result.content)
                output_path = output
            elif persist:
                output_path = self.workspace.save_output(scene, result.content)

            generation = GenerationOutcome(
                result=result,
                scene=scene,
                output_path=str(output_path) if output_path else None,
            )
            outcome["data"] = {"outputPath": generation.output_path, "scene": scene, "model": model}
        return generation

    async def evaluate(
        self,
        generated: str,
        reference: str,
        model: str = settings.DEFAULT_MODEL,
        scene: Optional[str] = None,
        prompt_id: Optional[str] = None,
        generated_name: Optional[str] = None,
        output: Optional[Path] = None,
        persist: bool = False,
        options: Optional[Dict[str, Any]] = None,
    ) -> EvaluationOutcome:
        """
        Judge ``generated`` against ``reference`` and append an evaluation
        record. ``prompt_id`` falls back to ``generated_name``.
        """
        options = options if options is not None else {"scene": scene, "model": model}
        with self._logged("evaluate", [], options) as outcome:
            if not scene:
                scene = scene_detector.detect(generated).scene
                logger.info(f"🔍 Auto-detected scene: {scene}")

            result = await self.gateway.evaluate(generated, reference, model)

            output_path = None
            if output:
                self.workspace.storage.write_json(output, result.to_dict())
                output_path = output
            elif persist:
                output_path = self.workspace.save_evaluation(result)

            self.logs.save_evaluation(EvaluationRecord(
                prompt_id=prompt_id or generated_name or INLINE_PROMPT_ID,
                scene=scene,
                scores=result.score_map(),
                summary=result.grade_label,
                timestamp=iso_timestamp(),
            ))

            evaluation = EvaluationOutcome(
                result=result,
                scene=scene,
                output_path=str(output_path) if output_path else None,
            )
            outcome["data"] = {"outputPath": evaluation.output_path, "scores": result.to_dict()}
        return evaluation

    async def optimize(
        self,
        prompt: str,
        evaluation: Union[EvaluationResult, Mapping[str, Any]],
        model: str = settings.DEFAULT_MODEL,
        save_scene: Optional[str] = None,
        output: Optional[Path] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> OptimizationOutcome:
        """
        Ask the model for a rewritten prompt. With ``save_scene`` the result
        becomes the next version of that scene; else it goes to ``output`` if set.
        """
        options = options if options is not None else {"model": model, "scene": save_scene}
        with self._logged("optimize", [], options) as outcome:
            result = await self.gateway.optimize(prompt, evaluation, model)

            saved = None
            output_path = None
            if save_scene:
                saved = self.versions.save(save_scene, result.content, OPTIMIZE_VERSION_NOTE)
            elif output:
                self.workspace.storage.write_text(output, result.content)
                output_path = output

            optimization = OptimizationOutcome(
                result=result,
                saved=saved,
                output_path=str(output_path) if output_path else None,
            )
            outcome["data"] = {
                "model": model,
                "version": saved.id if saved else None,
                "outputPath": optimization.output_path,
            }
        return optimization
