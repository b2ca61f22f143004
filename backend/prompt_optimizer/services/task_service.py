import logging
import random
import string
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..core.config import settings
from ..core.errors import NotFoundError
from ..models import Task

logger = logging.getLogger(__name__)

ID_ALPHABET = string.ascii_lowercase + string.digits
RUNNING_PROGRESS = 10


def new_task_id(task_type: str) -> str:
    suffix = "".join(random.choices(ID_ALPHABET, k=6))
    return f"task_{task_type}_{int(time.time() * 1000)}_{suffix}"


class TaskService:
    """
    In-memory task map for the API. Nothing is persisted: every task is
    lost when the process restarts.
    """

    def __init__(self, ttl_hours: int = settings.TASK_TTL_HOURS):
        self.ttl = timedelta(hours=ttl_hours)
        self._tasks: Dict[str, Task] = {}

    def create(self, task_type: str, task_input: Dict[str, Any]) -> Task:
        self.cleanup_old_tasks()

        now = datetime.now(timezone.utc)
        task = Task(
            id=new_task_id(task_type),
            type=task_type,
            input=task_input,
            created_at=now,
            updated_at=now,
        )
        self._tasks[task.id] = task
        logger.info(f"📥 Task created: {task.id}")
        return task

    def get(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def require(self, task_id: str) -> Task:
        task = self.get(task_id)
        if task is None:
            raise NotFoundError("Task not found")
        return task

    def update(self, task_id: str, **changes) -> Optional[Task]:
        task = self._tasks.get(task_id)
        if task is None:
            return None
        updated = task.model_copy(update={**changes, "updated_at": datetime.now(timezone.utc)})
        self._tasks[task_id] = updated
        return updated

    def list(
        self,
        status: Optional[str] = None,
        task_type: Optional[str] = None,
        limit: int = settings.TASK_LIST_LIMIT,
        offset: int = 0,
    ) -> List[Task]:
        """Newest first."""
        tasks = [
            t for t in self._tasks.values()
            if (not status or t.status == status) and (not task_type or t.type == task_type)
        ]
        tasks.sort(key=lambda t: t.created_at, reverse=True)
        limit = limit or settings.TASK_LIST_LIMIT
        return tasks[offset:offset + limit]

    def delete(self, task_id: str) -> bool:
        return self._tasks.pop(task_id, None) is not None

    def cleanup_old_tasks(self) -> int:
        """Drops tasks that are not running and older than the TTL."""
        cutoff = datetime.now(timezone.utc) - self.ttl
        stale = [
            task_id for task_id, task in self._tasks.items()
            if task.status != "running" and task.created_at < cutoff
        ]
        for task_id in stale:
            del self._tasks[task_id]

        if stale:
            logger.info(f"🧹 Cleanup: Dropped {len(stale)} expired tasks")
        return len(stale)

    async def run(self, task_id: str, work: Callable[[], Awaitable[Any]]) -> Optional[Task]:
        """
        Drives one task through running -> success | failed. The failure is
        stored on the task, which is where API clients read it.
        """
        self.update(task_id, status="running", progress=RUNNING_PROGRESS)
        try:
            output = await work()
        except Exception as e:
            logger.error(f"❌ Task {task_id} failed: {e}")
            return self.update(task_id, status="failed", progress=0, error=str(e))

        logger.info(f"✅ Task {task_id} finished")
        return self.update(task_id, status="success", progress=100, output=output)
