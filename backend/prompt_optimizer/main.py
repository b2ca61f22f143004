import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Import Core modules
from .core.config import Settings, settings as default_settings
from .core.errors import PromptOptimizerError
from .core.llm import LlmGateway
from .core.logging import configure_logging
from .core.storage import FileStorage
from .middleware.correlation import CorrelationIdMiddleware
from .schemas import error

# Import Services
from .services.prompt_version_service import PromptVersionService
from .services.task_service import TaskService
from .services.workspace_service import WorkspaceService

# Import Routers
from .api.v1.endpoints import insights, operations, scenes, system, tasks

logger = logging.getLogger(__name__)


def _validation_message(exc: RequestValidationError) -> str:
    fields = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        fields.append(f"{'.'.join(loc) or 'body'}: {err.get('msg', 'invalid')}")
    return "Invalid request: " + "; ".join(fields)


def create_app(
    settings: Optional[Settings] = None,
    gateway: Optional[LlmGateway] = None,
    storage: Optional[FileStorage] = None,
) -> FastAPI:
    """
    Builds the API with its services wired into ``app.state``.
    Tests pass their own settings and a gateway over a mock transport.
    """
    settings = settings or default_settings

    app = FastAPI(title=f"{settings.APP_NAME} API", version=settings.VERSION)

    # Services
    storage = storage or FileStorage(lock_timeout=settings.STORAGE_LOCK_TIMEOUT)
    workspace = WorkspaceService(settings.workspace_path, storage)
    app.state.settings = settings
    app.state.storage = storage
    app.state.gateway = gateway or LlmGateway(timeout=settings.LLM_TIMEOUT_SECONDS)
    app.state.workspace = workspace
    app.state.versions = PromptVersionService(workspace.prompts_dir, storage)
    app.state.log_dir = settings.log_path
    app.state.task_service = TaskService(ttl_hours=settings.TASK_TTL_HOURS)
    app.state.background_jobs = set()

    # Middleware
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Every failure keeps the response envelope
    @app.exception_handler(PromptOptimizerError)
    async def handle_core_error(request: Request, exc: PromptOptimizerError):
        logger.warning(f"⚠️  {request.method} {request.url.path} -> {exc.status_code}: {exc}")
        return JSONResponse(status_code=exc.status_code, content=error(str(exc)))

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content=error(_validation_message(exc)))

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception(f"❌ Unhandled error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content=error("Internal server error"))

    # Include Routers
    app.include_router(system.router, tags=["system"])
    app.include_router(scenes.router, tags=["scenes"])
    app.include_router(operations.router, tags=["operations"])
    app.include_router(tasks.router, tags=["tasks"])
    app.include_router(insights.router, tags=["insights"])

    @app.on_event("startup")
    async def startup_event():
        logger.info("🚀 Starting Prompt Optimizer API...")
        workspace.init_dirs()
        logger.info(f"✅ Workspace ready: {workspace.root.resolve()}")
        logger.info(f"ℹ️  Default model: {settings.DEFAULT_MODEL}, LLM timeout: {settings.LLM_TIMEOUT_SECONDS:g}s")
        logger.info("ℹ️  Tasks are kept in memory only and are lost on restart")

    return app


def run(host: Optional[str] = None, port: Optional[int] = None, settings: Optional[Settings] = None):
    import uvicorn

    settings = settings or default_settings
    configure_logging(log_level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)
    uvicorn.run(
        create_app(settings),
        host=host or settings.HOST,
        port=port or settings.PORT,
        log_config=None,
    )


if __name__ == "__main__":
    run()
