"""Synchronous detect / generate / evaluate / optimize. Each call is logged like a CLI command."""
from typing import Any, Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ....schemas import DetectRequest, EvaluateRequest, GenerateRequest, OptimizeRequest, ok
from ....services.engine_service import EngineService
from ...deps import get_engine

router = APIRouter(prefix="/api/v1")


async def run_operation(engine: EngineService, operation: str, request: BaseModel) -> Dict[str, Any]:
    """Runs one validated request and returns the JSON payload for ``data``."""
    if operation == "detect":
        return {"result": engine.detect(request.content).to_dict()}

    if operation == "generate":
        outcome = await engine.generate(request.data, request.prompt, request.model, scene=request.scene)
        return {"result": outcome.result.model_dump(mode="json"), "scene": outcome.scene}

    if operation == "evaluate":
        outcome = await engine.evaluate(
            request.generated,
            request.reference,
            request.model,
            scene=request.scene,
            prompt_id=request.prompt_id,
        )
        return {"result": outcome.result.to_dict(), "scene": outcome.scene}

    if operation == "optimize":
        outcome = await engine.optimize(request.prompt, request.evaluation, request.model)
        return {"result": outcome.result.model_dump(mode="json")}

    raise ValueError(f"Unknown operation: {operation}")


@router.post("/detect")
async def detect(request: DetectRequest, engine: EngineService = Depends(get_engine)):
    return ok(await run_operation(engine, "detect", request))


@router.post("/generate")
async def generate(request: GenerateRequest, engine: EngineService = Depends(get_engine)):
    return ok(await run_operation(engine, "generate", request))


@router.post("/evaluate")
async def evaluate(request: EvaluateRequest, engine: EngineService = Depends(get_engine)):
    return ok(await run_operation(engine, "evaluate", request))


@router.post("/optimize")
async def optimize(request: OptimizeRequest, engine: EngineService = Depends(get_engine)):
    return ok(await run_operation(engine, "optimize", request))
