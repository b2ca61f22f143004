"""Schemas package for request validation and the response envelope."""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Any, Dict, Optional

from ..core.config import settings
from ..models import TaskStatus, TaskType


class ApiResponse(BaseModel):
    """Envelope returned by every endpoint. code=0 means success."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    code: int = 0
    msg: str = "success"
    task_id: Optional[str] = None
    status: Optional[TaskStatus] = None
    progress: int = 100
    data: Optional[Any] = None
    error: Optional[str] = None


def ok(data: Any = None, task_id: Optional[str] = None, status: Optional[str] = None, progress: Optional[int] = None) -> Dict[str, Any]:
    return ApiResponse(
        code=0,
        msg="success",
        task_id=task_id,
        status=status or "success",
        progress=100 if progress is None else progress,
        data=data,
    ).model_dump(mode="json", by_alias=True)


def error(message: str, code: int = 1) -> Dict[str, Any]:
    return ApiResponse(
        code=code,
        msg=message,
        status="failed",
        progress=0,
        error=message,
    ).model_dump(mode="json", by_alias=True)


class ModelChoice(BaseModel):
    # Unknown keys are rejected by the gateway as a ConfigurationError
    model: str = settings.DEFAULT_MODEL


class DetectRequest(BaseModel):
    content: str = Field(..., min_length=1)


class GenerateRequest(ModelChoice):
    data: str = Field(..., min_length=1)
    prompt: str = Field(..., min_length=1)
    scene: Optional[str] = None


class EvaluateRequest(ModelChoice):
    generated: str = Field(..., min_length=1)
    reference: str = Field(..., min_length=1)
    scene: Optional[str] = None
    prompt_id: Optional[str] = Field(default=None, alias="promptId")

    model_config = ConfigDict(populate_by_name=True)


class OptimizeRequest(ModelChoice):
    prompt: str = Field(..., min_length=1)
    evaluation: Dict[str, Any]

    @field_validator("evaluation")
    @classmethod
    def validate_evaluation(cls, v):
        if not v:
            raise ValueError("evaluation must not be empty")
        return v


TASK_REQUESTS = {
    "detect": DetectRequest,
    "generate": GenerateRequest,
    "evaluate": EvaluateRequest,
    "optimize": OptimizeRequest,
}


class CreateTaskRequest(BaseModel):
    type: TaskType
    input: Dict[str, Any]


