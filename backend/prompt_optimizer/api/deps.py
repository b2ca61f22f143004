from fastapi import Request

from ..services.engine_service import EngineService
from ..services.insight_service import InsightService
from ..services.log_service import LogService
from ..services.task_service import TaskService


def get_log_service(request: Request) -> LogService:
    # One instance per request: a LogService tracks a single in-flight entry
    state = request.app.state
    return LogService(state.log_dir, state.storage)


def build_engine(state) -> EngineService:
    return EngineService(
        gateway=state.gateway,
        log_service=LogService(state.log_dir, state.storage),
        workspace=state.workspace,
        versions=state.versions,
    )


def get_engine(request: Request) -> EngineService:
    return build_engine(request.app.state)


def get_insight_service(request: Request) -> InsightService:
    return InsightService(get_log_service(request))


def get_task_service(request: Request) -> TaskService:
    return request.app.state.task_service
