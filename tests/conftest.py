import json
from typing import Any, Callable, Dict, List

import httpx
import pytest

from prompt_optimizer.core.llm import OPTIMIZE_SYSTEM_PROMPT, LlmGateway
from prompt_optimizer.core.storage import FileStorage
from prompt_optimizer.services.engine_service import EngineService
from prompt_optimizer.services.log_service import LogService
from prompt_optimizer.services.prompt_version_service import PromptVersionService
from prompt_optimizer.services.workspace_service import WorkspaceService

TEST_KEYS = {
    "DASHSCOPE_API_KEY": "test-dashscope",
    "DEEPSEEK_API_KEY": "test-deepseek",
    "DOUBAO_API_KEY": "test-doubao",
}

JUDGE_RESULT = {
    "completeness": 85,
    "detail": 80,
    "thoroughness": 75,
    "word_count_diff": 90,
    "total": 82,
    "grade": "A",
    "strengths": ["covers every decision"],
    "weaknesses": ["action items lack owners"],
    "suggestions": ["list an owner for each action item"],
}

SUMMARY_TEXT = "## 产品周会纪要\n- 本周需求排期已确认"
OPTIMIZED_PROMPT = "# Improved prompt\nList an owner for every action item."


def chat_response(content: Any, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json={"choices": [{"message": {"role": "assistant", "content": content}}]})


def default_handler(request: httpx.Request) -> httpx.Response:
    """Answers like a provider: judge JSON for evaluate, a prompt for optimize, a summary otherwise."""
    payload = json.loads(request.content)
    if payload.get("response_format") == {"type": "json_object"}:
        return chat_response(json.dumps(JUDGE_RESULT))
    if payload["messages"][0]["content"] == OPTIMIZE_SYSTEM_PROMPT:
        return chat_response(OPTIMIZED_PROMPT)
    return chat_response(SUMMARY_TEXT)


class RecordingTransport(httpx.MockTransport):
    """MockTransport that remembers every request it served."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response] = default_handler):
        self.requests: List[httpx.Request] = []

        def record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(record)

    def payloads(self) -> List[Dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests]


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def gateway(transport):
    return LlmGateway(timeout=5, transport=transport, environ=TEST_KEYS)


@pytest.fixture
def storage(tmp_path):
    return FileStorage(base_path=tmp_path, lock_timeout=1)


@pytest.fixture
def workspace(tmp_path, storage):
    return WorkspaceService(tmp_path, storage)


@pytest.fixture
def log_service(tmp_path, storage):
    return LogService(tmp_path / "logs", storage)


@pytest.fixture
def versions(workspace, storage):
    return PromptVersionService(workspace.prompts_dir, storage)


@pytest.fixture
def engine(gateway, log_service, workspace, versions):
    return EngineService(gateway, log_service, workspace, versions)


def write_jsonl(path, records):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as fh:
        for record in records:
            fh.write(json.dumps(record, ensure_ascii=False) + "\n")


def command_line(command: str, timestamp: str, status: str = "success", duration_ms: int = 100, error: str = None):
    return {
        "timestamp": timestamp,
        "command": command,
        "input": {"args": [], "options": {}},
        "output": {"success": status == "success", "data": None, "error": error, "duration_ms": duration_ms},
        "status": status,
    }
