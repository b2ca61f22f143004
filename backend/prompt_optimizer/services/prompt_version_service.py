import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from ..core.errors import ConflictError, CorruptFileError, NotFoundError, ValidationError
from ..core.storage import FileStorage
from ..models import PromptIndex, PromptVersion, ResolvedPrompt, SavedVersion, SceneMeta, VersionMeta
from .log_service import iso_timestamp

logger = logging.getLogger(__name__)

VERSION_FILE_RE = re.compile(r"^v(\d+)\.md$")
DEFAULT_PROMPT_FILE = "default.md"
META_DIR = "_meta"
INDEX_FILE = "index.json"


def parse_version(version: str) -> int:
    """'3', 'v3' and 'v3.md' all mean version 3."""
    match = re.fullmatch(r"v?(\d+)(?:\.md)?", str(version).strip())
    if not match:
        raise ValidationError(f"Invalid prompt version: {version}")
    return int(match.group(1))


class PromptVersionService:
    """
    Append-only prompt history per scene: ``prompts/<scene>/v<N>.md`` plus
    ``prompts/_meta/index.json``. Versions are never deleted or renumbered.
    """

    def __init__(self, prompts_dir: Path, storage: Optional[FileStorage] = None):
        self.prompts_dir = Path(prompts_dir)
        self.storage = storage or FileStorage()
        self.index_path = self.prompts_dir / META_DIR / INDEX_FILE

    def scene_dir(self, scene: str) -> Path:
        scene = scene.strip().strip("/")
        if not scene or ".." in scene.split("/") or scene.startswith(META_DIR):
            raise ValidationError(f"Invalid scene: {scene!r}")
        return self.prompts_dir / scene

    def _version_numbers(self, scene: str) -> List[int]:
        directory = self.scene_dir(scene)
        if not directory.is_dir():
            return []
        numbers = []
        for item in self.storage.list_dir(directory, extensions=["md"]):
            match = VERSION_FILE_RE.match(item.name)
            if match:
                numbers.append(int(match.group(1)))
        return sorted(numbers)

    def read_index(self) -> PromptIndex:
        if not self.index_path.exists():
            return PromptIndex()
        try:
            return PromptIndex.model_validate(self.storage.read_json(self.index_path))
        except (json.JSONDecodeError, PydanticValidationError) as e:
            raise CorruptFileError(f"Prompt index is corrupt: {self.index_path} ({e})")

    def _record_version(self, scene: str, version_id: str, note: str):
        # Read-modify-write under the index lock
        with self.storage.lock(self.index_path):
            index = self.read_index()
            meta = index.scenes.setdefault(scene, SceneMeta())
            meta.versions.append(VersionMeta(id=version_id, created_at=iso_timestamp(), note=note))
            meta.current_version = version_id
            self.storage.write_json(self.index_path, index.model_dump(mode="json"))

    def save(self, scene: str, content: str, note: str = "") -> SavedVersion:
        """
        Store ``content`` as the next version of ``scene``.

        The version file is created exclusively; if another writer claimed the
        number first, the number is recomputed and the write retried once.
        """
        directory = self.scene_dir(scene)
        # Fails on a corrupt index before a version file is written
        self.read_index()
        self.storage.ensure_dir(directory)

        for attempt in range(2):
            existing = self._version_numbers(scene)
            next_version = (existing[-1] if existing else 0) + 1
            path = directory / f"v{next_version}.md"
            try:
                self.storage.create_exclusive(path, content)
                break
            except FileExistsError:
                logger.warning(f"Version v{next_version} of {scene} was taken concurrently (attempt {attempt + 1})")
        else:
            raise ConflictError(f"Could not allocate a new version for {scene}: concurrent writers")

        self._record_version(scene, f"v{next_version}", note)
        logger.info(f"💾 Saved {scene} v{next_version} -> {path}")
        return SavedVersion(version=next_version, path=str(path))

    def list(self, scene: str) -> List[PromptVersion]:
        """All versions of ``scene``, newest first (numeric order)."""
        directory = self.scene_dir(scene)
        if not directory.is_dir():
            return []

        meta = self.read_index().scenes.get(scene, SceneMeta())
        notes = {v.id: v for v in meta.versions}

        versions = []
        for number in reversed(self._version_numbers(scene)):
            version_id = f"v{number}"
            path = directory / f"{version_id}.md"
            info = notes.get(version_id)
            versions.append(PromptVersion(
                id=version_id,
                number=number,
                path=str(path),
                modified=datetime.fromtimestamp(self.storage.stat(path)["modified_time"], tz=timezone.utc),
                note=info.note if info else "",
                created_at=info.created_at if info else None,
            ))
        return versions

    def resolve_path(self, scene: str, version: Optional[str] = None) -> Path:
        """Explicit version, else ``default.md``, else the highest version."""
        directory = self.scene_dir(scene)
        if not directory.is_dir():
            raise NotFoundError(f"Scene directory not found: {scene}")

        if version:
            path = directory / f"v{parse_version(version)}.md"
            if not path.is_file():
                raise NotFoundError(f"Prompt version not found: {scene}/{path.name}")
            return path

        default_path = directory / DEFAULT_PROMPT_FILE
        if default_path.is_file():
            return default_path

        numbers = self._version_numbers(scene)
        if numbers:
            return directory / f"v{numbers[-1]}.md"

        raise NotFoundError(f"Scene {scene} has no prompt files")

    def get(self, scene: str, version: Optional[str] = None) -> ResolvedPrompt:
        path = self.resolve_path(scene, version)
        match = VERSION_FILE_RE.match(path.name)
        return ResolvedPrompt(
            path=str(path),
            content=self.storage.read_text(path),
            version=f"v{match.group(1)}" if match else None,
        )

    def download(self, scene: str, version: str, destination: Path) -> Path:
        """Copy one version verbatim to ``destination``."""
        source = self.resolve_path(scene, version)
        copied = self.storage.copy(source, destination)
        logger.info(f"📥 Downloaded {scene}/{source.name} -> {copied}")
        return copied
