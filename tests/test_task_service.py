import asyncio
import re
from datetime import datetime, timedelta, timezone

import pytest

from prompt_optimizer.core.errors import NotFoundError
from prompt_optimizer.services.task_service import TaskService


def test_create_assigns_id_and_pending_state():
    tasks = TaskService()

    task = tasks.create("detect", {"content": "x"})

    assert re.fullmatch(r"task_detect_\d{13}_[a-z0-9]{6}", task.id)
    assert task.status == "pending"
    assert task.progress == 0
    assert tasks.get(task.id) == task
    assert set(task.to_dict()) >= {"id", "type", "status", "progress", "input", "createdAt", "updatedAt"}


def test_require_unknown_task():
    with pytest.raises(NotFoundError):
        TaskService().require("task_missing")


def test_update_touches_updated_at():
    tasks = TaskService()
    task = tasks.create("generate", {})

    updated = tasks.update(task.id, status="running", progress=10)

    assert updated.status == "running"
    assert updated.updated_at >= task.updated_at
    assert tasks.update("task_missing", status="failed") is None


def test_list_filters_newest_first_and_pages():
    tasks = TaskService()
    created = [tasks.create(kind, {}) for kind in ("detect", "generate", "detect", "evaluate")]
    for offset, task in enumerate(created):
        tasks._tasks[task.id] = task.model_copy(update={"created_at": task.created_at + timedelta(seconds=offset)})

    assert [t.id for t in tasks.list()] == [t.id for t in reversed(created)]
    assert [t.type for t in tasks.list(task_type="detect")] == ["detect", "detect"]
    assert [t.id for t in tasks.list(limit=2, offset=1)] == [created[2].id, created[1].id]

    tasks.update(created[0].id, status="failed")
    assert [t.id for t in tasks.list(status="failed")] == [created[0].id]


def test_delete():
    tasks = TaskService()
    task = tasks.create("detect", {})

    assert tasks.delete(task.id) is True
    assert tasks.delete(task.id) is False
    assert tasks.get(task.id) is None


def test_cleanup_keeps_running_and_recent_tasks():
    tasks = TaskService(ttl_hours=24)
    old = datetime.now(timezone.utc) - timedelta(hours=25)
    stale = tasks.create("detect", {})
    running = tasks.create("generate", {})
    recent = tasks.create("evaluate", {})
    tasks._tasks[stale.id] = stale.model_copy(update={"created_at": old, "status": "success"})
    tasks._tasks[running.id] = running.model_copy(update={"created_at": old, "status": "running"})

    assert tasks.cleanup_old_tasks() == 1
    assert tasks.get(stale.id) is None
    assert tasks.get(running.id) is not None
    assert tasks.get(recent.id) is not None


def test_run_success():
    tasks = TaskService()
    task = tasks.create("detect", {})
    seen = []

    async def work():
        seen.append(tasks.get(task.id).status)
        return {"scene": "hr/exit"}

    finished = asyncio.run(tasks.run(task.id, work))

    assert seen == ["running"]
    assert finished.status == "success"
    assert finished.progress == 100
    assert finished.output == {"scene": "hr/exit"}


def test_run_failure_is_recorded_on_the_task():
    tasks = TaskService()
    task = tasks.create("generate", {})

    async def work():
        raise TimeoutError("generate failed: request timed out")

    finished = asyncio.run(tasks.run(task.id, work))

    assert finished.status == "failed"
    assert finished.progress == 0
    assert finished.error == "generate failed: request timed out"
