import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import ValidationError as PydanticValidationError

from ....core.config import settings
from ....core.errors import ValidationError
from ....models import TaskStatus, TaskType
from ....schemas import TASK_REQUESTS, CreateTaskRequest, ok
from ....services.task_service import TaskService
from ...deps import build_engine, get_task_service
from .operations import run_operation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/tasks")


def _validate_input(body: CreateTaskRequest):
    try:
        return TASK_REQUESTS[body.type].model_validate(body.input)
    except PydanticValidationError as e:
        missing = ", ".join(str(err["loc"][-1]) for err in e.errors() if err.get("loc"))
        raise ValidationError(f"Invalid input for {body.type}: {missing or e.error_count()}")


@router.post("")
async def create_task(body: CreateTaskRequest, request: Request, tasks: TaskService = Depends(get_task_service)):
    operation_request = _validate_input(body)
    task = tasks.create(body.type, body.input)

    engine = build_engine(request.app.state)
    job = asyncio.create_task(tasks.run(task.id, lambda: run_operation(engine, body.type, operation_request)))

    # The loop only keeps weak references to tasks
    running = request.app.state.background_jobs
    running.add(job)
    job.add_done_callback(running.discard)
    logger.info(f"📥 Task {task.id} queued")

    return ok(
        {"id": task.id, "type": task.type, "status": task.status, "createdAt": task.to_dict()["createdAt"]},
        task_id=task.id,
        status="pending",
        progress=0,
    )


@router.get("/{task_id}")
async def get_task(task_id: str, tasks: TaskService = Depends(get_task_service)):
    task = tasks.require(task_id)
    data = task.to_dict()
    data.pop("input", None)
    return ok(data, task_id=task.id, status=task.status, progress=task.progress)


@router.get("")
async def list_tasks(
    status: Optional[TaskStatus] = None,
    type: Optional[TaskType] = None,
    limit: int = Query(default=settings.TASK_LIST_LIMIT, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    tasks: TaskService = Depends(get_task_service),
):
    items = tasks.list(status=status, task_type=type, limit=limit, offset=offset)
    summaries = [
        {key: value for key, value in t.to_dict().items() if key in ("id", "type", "status", "progress", "createdAt")}
        for t in items
    ]
    return ok({"tasks": summaries, "total": len(summaries)})
