import os

from fastapi import APIRouter

from ....core.llm import describe_models
from ....schemas import ok
from ....services.log_service import iso_timestamp

router = APIRouter()


@router.get("/health")
async def health_check():
    return ok({"status": "ok", "timestamp": iso_timestamp()})


@router.get("/api/v1/models")
async def list_models():
    """Registered providers. Credentials are reported as configured or not, never echoed."""
    models = [
        {**model, "configured": bool(os.environ.get(model["api_key_env"]))}
        for model in describe_models()
    ]
    return ok({"models": models})
