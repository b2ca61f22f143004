import json
import logging
import os
import shutil
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from .config import settings
from .errors import NotFoundError, StorageLockTimeout

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass
class ListResult:
    path: Path
    name: str
    is_directory: bool
    size: int
    modified_time: float


class FileStorage:
    """
    File access with cooperative advisory locking per resolved path.

    Every read/write/append/delete/copy/move on the same path is serialized
    inside this process. Services that must not race share one instance.
    It does NOT protect against other processes.
    """

    def __init__(self, base_path: Optional[PathLike] = None, lock_timeout: float = settings.STORAGE_LOCK_TIMEOUT):
        self.base_path = Path(base_path) if base_path is not None else Path.cwd()
        self.lock_timeout = lock_timeout
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def resolve(self, path: PathLike) -> Path:
        path = Path(path)
        if path.is_absolute():
            return path
        return self.base_path / path

    @contextmanager
    def lock(self, path: PathLike) -> Iterator[Path]:
        """Hold the advisory lock for ``path``; re-entrant within a thread."""
        resolved = self.resolve(path).resolve()
        key = str(resolved)
        with self._registry_lock:
            path_lock = self._locks.setdefault(key, threading.RLock())

        if not path_lock.acquire(timeout=self.lock_timeout):
            raise StorageLockTimeout(f"Lock timeout for: {resolved}")
        try:
            yield resolved
        finally:
            path_lock.release()

    def exists(self, path: PathLike) -> bool:
        return self.resolve(path).exists()

    def read_text(self, path: PathLike) -> str:
        with self.lock(path) as resolved:
            try:
                return resolved.read_text(encoding="utf-8")
            except FileNotFoundError:
                raise NotFoundError(f"File not found: {path}")

    def write_text(self, path: PathLike, content: str, mkdir: bool = True) -> Path:
        with self.lock(path) as resolved:
            if mkdir:
                resolved.parent.mkdir(parents=True, exist_ok=True)
            resolved.write_text(content, encoding="utf-8")
            return resolved

    def create_exclusive(self, path: PathLike, content: str) -> Path:
        """Write a new file, raising FileExistsError if it is already there."""
        with self.lock(path) as resolved:
            resolved.parent.mkdir(parents=True, exist_ok=True)
            with open(resolved, "x", encoding="utf-8") as fh:
                fh.write(content)
            return resolved

    def append_text(self, path: PathLike, content: str) -> Path:
        with self.lock(path) as resolved:
            resolved.parent.mkdir(parents=True, exist_ok=True)
            with open(resolved, "a", encoding="utf-8") as fh:
                fh.write(content)
            return resolved

    def read_json(self, path: PathLike) -> Any:
        return json.loads(self.read_text(path))

    def write_json(self, path: PathLike, data: Any) -> Path:
        return self.write_text(path, json.dumps(data, ensure_ascii=False, indent=2))

    def list_dir(self, path: PathLike, extensions: Optional[Sequence[str]] = None, recursive: bool = False) -> List[ListResult]:
        """
        List a directory. ``extensions`` are given without the dot ("md", "jsonl").
        Entries come back sorted by name.
        """
        resolved = self.resolve(path)
        if not resolved.is_dir():
            raise NotFoundError(f"Directory not found: {path}")

        results: List[ListResult] = []
        for entry in sorted(resolved.iterdir(), key=lambda p: p.name):
            is_dir = entry.is_dir()
            # With an extension filter only matching files are reported
            if not extensions or (not is_dir and entry.suffix.lstrip(".") in extensions):
                stats = entry.stat()
                results.append(ListResult(
                    path=entry,
                    name=entry.name,
                    is_directory=is_dir,
                    size=stats.st_size,
                    modified_time=stats.st_mtime,
                ))

            if recursive and is_dir:
                results.extend(self.list_dir(entry, extensions=extensions, recursive=True))

        return results

    def ensure_dir(self, path: PathLike) -> Path:
        resolved = self.resolve(path)
        resolved.mkdir(parents=True, exist_ok=True)
        return resolved

    def delete(self, path: PathLike):
        with self.lock(path) as resolved:
            if not resolved.exists():
                raise NotFoundError(f"File not found: {path}")
            if resolved.is_dir():
                shutil.rmtree(resolved)
            else:
                resolved.unlink()

    def copy(self, source: PathLike, destination: PathLike) -> Path:
        with self.lock(source) as src, self.lock(destination) as dest:
            if not src.is_file():
                raise NotFoundError(f"File not found: {source}")
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(src, dest)
            return dest

    def move(self, source: PathLike, destination: PathLike) -> Path:
        with self.lock(source) as src, self.lock(destination) as dest:
            if not src.exists():
                raise NotFoundError(f"File not found: {source}")
            dest.parent.mkdir(parents=True, exist_ok=True)
            os.replace(src, dest)
            return dest

    def stat(self, path: PathLike) -> Dict[str, Any]:
        resolved = self.resolve(path)
        try:
            stats = resolved.stat()
        except FileNotFoundError:
            raise NotFoundError(f"File not found: {path}")
        return {
            "size": stats.st_size,
            "is_directory": resolved.is_dir(),
            "is_file": resolved.is_file(),
            "modified_time": stats.st_mtime,
            "created_time": stats.st_ctime,
        }
