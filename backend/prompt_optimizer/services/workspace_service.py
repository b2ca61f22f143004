import logging
from pathlib import Path
from typing import Dict, List, Optional

from ..core.llm import MODELS
from ..core.prompts import ENV_EXAMPLE, README_TEMPLATE
from ..core.storage import FileStorage
from ..models import EvaluationResult
from .log_service import utc_now
from .scene_detector import CATEGORY_LABELS, get_all_scenes, get_scene_categories

logger = logging.getLogger(__name__)

WORKSPACE_DIRS = ("prompts", "outputs", "evaluations", "dialogue", "logs")
DEFAULT_PROJECT_NAME = "prompt-optimizer"


def file_timestamp() -> str:
    """UTC timestamp safe for file names: 2026-10-18T09-30-05"""
    return utc_now().strftime("%Y-%m-%dT%H-%M-%S")


class WorkspaceService:
    """Directory layout of a prompt workspace and the files commands drop into it."""

    def __init__(self, root: Path, storage: Optional[FileStorage] = None):
        self.root = Path(root)
        self.storage = storage or FileStorage()

    @property
    def prompts_dir(self) -> Path:
        return self.root / "prompts"

    @property
    def outputs_dir(self) -> Path:
        return self.root / "outputs"

    @property
    def evaluations_dir(self) -> Path:
        return self.root / "evaluations"

    def init_dirs(self) -> List[Path]:
        """Creates the workspace directories and one prompt directory per scene. Returns the new ones."""
        created = []
        targets = [self.root / name for name in WORKSPACE_DIRS]
        targets += [self.prompts_dir / scene for scene in get_all_scenes()]

        for path in targets:
            if not path.exists():
                self.storage.ensure_dir(path)
                created.append(path)

        if created:
            logger.info(f"📁 Created {len(created)} workspace directories under {self.root}")
        return created

    def write_scaffold(self, project_name: Optional[str] = None, force: bool = False) -> List[Path]:
        """
        Writes ``.env.example`` (never overwritten) and ``README.md``
        (overwritten only with ``force``). Returns the files written.
        """
        written = []

        env_path = self.root / ".env.example"
        if not env_path.exists():
            written.append(self.storage.write_text(env_path, ENV_EXAMPLE))

        readme_path = self.root / "README.md"
        if force or not readme_path.exists():
            readme = README_TEMPLATE.format(
                project_name=project_name or DEFAULT_PROJECT_NAME,
                scene_lines=self._scene_lines(),
                model_lines="\n".join(f"- {cfg.display_name} (`{key}`)" for key, cfg in MODELS.items()),
            )
            written.append(self.storage.write_text(readme_path, readme))

        return written

    @staticmethod
    def _scene_lines() -> str:
        categories: Dict[str, List[str]] = get_scene_categories()
        return "\n".join(
            f"- {CATEGORY_LABELS.get(category, category)}: {', '.join(scenes)}"
            for category, scenes in categories.items()
        )

    def save_output(self, scene: str, content: str) -> Path:
        path = self.outputs_dir / scene / f"{file_timestamp()}.md"
        self.storage.write_text(path, content)
        logger.info(f"💾 Saved summary -> {path}")
        return path

    def save_evaluation(self, result: EvaluationResult) -> Path:
        path = self.evaluations_dir / f"eval_{file_timestamp()}.json"
        self.storage.write_json(path, result.to_dict())
        logger.info(f"💾 Saved evaluation -> {path}")
        return path

    def read_text(self, path: Path) -> str:
        return self.storage.read_text(path)
