import json
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Number = Union[int, float]
TaskType = Literal["detect", "generate", "evaluate", "optimize"]
TaskStatus = Literal["pending", "running", "success", "failed"]


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on disk and on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Scene detection / LLM results
# ---------------------------------------------------------------------------

class DetectionResult(CamelModel):
    scene: str
    confidence: float
    keywords: List[str]
    all_scores: Dict[str, int]


class GenerationResult(BaseModel):
    content: str
    model: str


class EvaluationResult(BaseModel):
    """
    Judge output, kept exactly as the provider returned it. Field types are
    not checked and unknown keys are kept; readers go through ``score_map``
    and ``text_list``.
    """
    model_config = ConfigDict(extra="allow")

    completeness: Any = None
    detail: Any = None
    thoroughness: Any = None
    word_count_diff: Any = None
    total: Any = None
    grade: Any = None
    strengths: Any = Field(default_factory=list)
    weaknesses: Any = Field(default_factory=list)
    suggestions: Any = Field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    def score_map(self) -> Dict[str, Number]:
        """The numeric scores recorded in the evaluation log. Non-numbers are left out."""
        scores = {
            "total": self.total,
            "completeness": self.completeness,
            "detail": self.detail,
            "thoroughness": self.thoroughness,
        }
        return {
            key: value for key, value in scores.items()
            if isinstance(value, (int, float)) and not isinstance(value, bool)
        }

    def text_list(self, name: str) -> List[str]:
        """``strengths`` / ``weaknesses`` / ``suggestions`` as strings, whatever shape the judge used."""
        value = getattr(self, name, None)
        if value is None:
            return []
        if not isinstance(value, (list, tuple)):
            value = [value]
        return [item if isinstance(item, str) else json.dumps(item, ensure_ascii=False) for item in value]

    @property
    def grade_label(self) -> str:
        return "" if self.grade is None else str(self.grade)


# ---------------------------------------------------------------------------
# Log store
# ---------------------------------------------------------------------------

class LogInput(BaseModel):
    args: List[str] = Field(default_factory=list)
    options: Dict[str, Any] = Field(default_factory=dict)


class LogOutput(BaseModel):
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    duration_ms: int = 0


class LogEntry(BaseModel):
    timestamp: str
    command: str
    input: LogInput = Field(default_factory=LogInput)
    output: Optional[LogOutput] = None
    status: Literal["pending", "success", "error"] = "pending"

    @property
    def date(self) -> str:
        return self.timestamp.split("T")[0]

    @property
    def duration_ms(self) -> int:
        return self.output.duration_ms if self.output else 0

    @property
    def error(self) -> Optional[str]:
        return self.output.error if self.output else None


class EvaluationRecord(CamelModel):
    prompt_id: str
    scene: str
    scores: Dict[str, Number] = Field(default_factory=dict)
    summary: str = ""
    timestamp: str


class CommandStats(CamelModel):
    total_commands: int = 0
    success_count: int = 0
    error_count: int = 0
    avg_duration_ms: int = 0

    @property
    def success_rate(self) -> float:
        if self.total_commands == 0:
            return 0.0
        return self.success_count / self.total_commands * 100


class DailyTrend(CamelModel):
    date: str
    total: int = 0
    success: int = 0
    error: int = 0
    success_rate: int = 0
    avg_duration_ms: int = 0


class SceneEvaluationStats(CamelModel):
    scene: str
    count: int
    avg_score: float
    scores: Dict[str, List[Number]] = Field(default_factory=dict)


class InsightReport(CamelModel):
    generated_at: str
    command: Optional[str] = None
    days: int
    stats: CommandStats
    success_rate: float
    alert_threshold: float
    below_threshold: bool
    trends: List[DailyTrend] = Field(default_factory=list)
    distribution: Dict[str, int] = Field(default_factory=dict)
    error_categories: Dict[str, List[str]] = Field(default_factory=dict)
    scene_stats: List[SceneEvaluationStats] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    best_command: Optional[str] = None
    best_command_rate: Optional[float] = None
    trend_note: Optional[str] = None


# ---------------------------------------------------------------------------
# Prompt versions
# ---------------------------------------------------------------------------

class VersionMeta(BaseModel):
    id: str
    created_at: str
    note: str = ""


class SceneMeta(BaseModel):
    versions: List[VersionMeta] = Field(default_factory=list)
    current_version: Optional[str] = None


class PromptIndex(BaseModel):
    scenes: Dict[str, SceneMeta] = Field(default_factory=dict)


class PromptVersion(BaseModel):
    id: str
    number: int
    path: str
    modified: datetime
    note: str = ""
    created_at: Optional[str] = None


class SavedVersion(BaseModel):
    version: int
    path: str

    @property
    def id(self) -> str:
        return f"v{self.version}"


class ResolvedPrompt(BaseModel):
    path: str
    content: str
    version: Optional[str] = None


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

class Task(CamelModel):
    id: str
    type: TaskType
    status: TaskStatus = "pending"
    progress: int = 0
    input: Dict[str, Any] = Field(default_factory=dict)
    output: Optional[Any] = None
    error: Optional[str] = None
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Engine outcomes
# ---------------------------------------------------------------------------

class GenerationOutcome(CamelModel):
    result: GenerationResult
    scene: str
    output_path: Optional[str] = None


class EvaluationOutcome(CamelModel):
    result: EvaluationResult
    scene: str
    output_path: Optional[str] = None


class OptimizationOutcome(CamelModel):
    result: GenerationResult
    saved: Optional[SavedVersion] = None
    output_path: Optional[str] = None
