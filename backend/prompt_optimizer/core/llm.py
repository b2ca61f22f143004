import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Union

import httpx
from pydantic import ValidationError as PydanticValidationError

from ..models import EvaluationResult, GenerationResult
from .config import settings
from .errors import ConfigurationError, LlmTimeoutError, ProtocolError, UpstreamError, ValidationError
from .prompts import EVALUATION_SYSTEM_PROMPT, build_evaluation_prompt, build_optimize_prompt

logger = logging.getLogger(__name__)

GENERATE_TEMPERATURE = 0.7
GENERATE_MAX_TOKENS = 8192
EVALUATE_TEMPERATURE = 0.3
EVALUATE_MAX_TOKENS = 4000

OPTIMIZE_SYSTEM_PROMPT = "You are a prompt optimization expert."


@dataclass(frozen=True)
class ModelConfig:
    display_name: str
    provider: str
    api_key_env: str
    endpoint: str
    model_name: str


# All three providers speak the OpenAI-compatible chat completions protocol.
MODELS: Dict[str, ModelConfig] = {
    "qwen-max": ModelConfig(
        display_name="QWEN MAX",
        provider="aliyun",
        api_key_env="DASHSCOPE_API_KEY",
        endpoint="https://dashscope.aliyuncs.com/compatible-mode/v1/chat/completions",
        model_name="qwen-max",
    ),
    "deepseek-v3": ModelConfig(
        display_name="DeepSeek V3",
        provider="deepseek",
        api_key_env="DEEPSEEK_API_KEY",
        endpoint="https://api.deepseek.com/v1/chat/completions",
        model_name="deepseek-chat",
    ),
    "doubao": ModelConfig(
        display_name="Doubao 1.8",
        provider="volcengine",
        api_key_env="DOUBAO_API_KEY",
        endpoint="https://ark.cn-beijing.volces.com/api/v3/chat/completions",
        model_name="doubao-pro-32k",
    ),
}


def supported_models() -> List[str]:
    return list(MODELS.keys())


def describe_models() -> List[Dict[str, str]]:
    return [
        {"key": key, "name": cfg.display_name, "provider": cfg.provider, "api_key_env": cfg.api_key_env}
        for key, cfg in MODELS.items()
    ]


def get_model_config(model_key: str) -> ModelConfig:
    config = MODELS.get(model_key)
    if config is None:
        raise ConfigurationError(
            f"Unsupported model: {model_key}. Supported models: {', '.join(supported_models())}"
        )
    return config


class LlmGateway:
    """
    Uniform generate / evaluate / optimize over the registered providers.

    One request per call, bounded by a single deadline. Nothing is retried:
    every failure surfaces as a PromptOptimizerError subclass.
    """

    def __init__(
        self,
        timeout: float = settings.LLM_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.timeout = timeout
        self.transport = transport
        self.environ = environ if environ is not None else os.environ

    def _api_key(self, config: ModelConfig) -> str:
        api_key = self.environ.get(config.api_key_env)
        if not api_key:
            raise ConfigurationError(f"API key not set: {config.api_key_env}")
        return api_key

    async def _chat(
        self,
        operation: str,
        messages: List[Dict[str, str]],
        model: str,
        temperature: float,
        max_tokens: int,
        response_format: Optional[Dict[str, str]] = None,
    ) -> str:
        config = get_model_config(model)
        api_key = self._api_key(config)

        payload: Dict[str, Any] = {
            "model": config.model_name,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if response_format:
            payload["response_format"] = response_format

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        }

        logger.info(f"🤖 {operation} via {config.display_name} ({config.model_name})")
        started = time.monotonic()
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
                response = await client.post(config.endpoint, json=payload, headers=headers)
        except httpx.TimeoutException:
            logger.error(f"{operation} timed out after {self.timeout}s ({model})")
            raise LlmTimeoutError(f"{operation} failed: request timed out after {self.timeout:g}s")
        except httpx.HTTPError as e:
            logger.error(f"{operation} transport error ({model}): {e}")
            raise UpstreamError(f"{operation} failed: {e}")

        elapsed_ms = int((time.monotonic() - started) * 1000)

        if not response.is_success:
            logger.warning(f"{operation} returned {response.status_code} from {config.provider} in {elapsed_ms}ms")
            raise UpstreamError(f"{operation} failed: API error {response.status_code} - {response.text}")

        try:
            body = response.json()
        except ValueError:
            raise ProtocolError(f"{operation} failed: response is not JSON")

        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise ProtocolError(f"{operation} failed: invalid LLM response format")

        if not isinstance(content, str):
            raise ProtocolError(f"{operation} failed: invalid LLM response format")

        logger.info(f"✅ {operation} finished in {elapsed_ms}ms ({len(content)} chars)")
        return content

    async def _generate(self, operation: str, data: str, prompt: str, model: str) -> GenerationResult:
        messages = [
            {"role": "system", "content": prompt},
            {"role": "user", "content": data},
        ]
        content = await self._chat(
            operation,
            messages,
            model,
            temperature=GENERATE_TEMPERATURE,
            max_tokens=GENERATE_MAX_TOKENS,
        )
        return GenerationResult(content=content, model=model)

    async def generate(self, data: str, prompt: str, model: str = settings.DEFAULT_MODEL) -> GenerationResult:
        """Summarize dialogue ``data`` using ``prompt`` as the system message."""
        return await self._generate("generate", data, prompt, model)

    async def evaluate(self, generated: str, reference: str, model: str = settings.DEFAULT_MODEL) -> EvaluationResult:
        """
        LLM-as-a-judge: score ``generated`` against ``reference``.
        The JSON object returned by the model is trusted as-is (no range checks).
        """
        messages = [
            {"role": "system", "content": EVALUATION_SYSTEM_PROMPT},
            {"role": "user", "content": build_evaluation_prompt(generated, reference)},
        ]
        content = await self._chat(
            "evaluate",
            messages,
            model,
            temperature=EVALUATE_TEMPERATURE,
            max_tokens=EVALUATE_MAX_TOKENS,
            response_format={"type": "json_object"},
        )

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            logger.debug(f"Judge response was: {content[:500]}")
            raise ProtocolError(f"evaluate failed: judge did not return valid JSON ({e})")

        if not isinstance(data, dict):
            raise ProtocolError("evaluate failed: judge returned JSON that is not an object")

        return EvaluationResult.model_validate(data)

    async def optimize(
        self,
        prompt: str,
        evaluation: Union[EvaluationResult, Mapping[str, Any]],
        model: str = settings.DEFAULT_MODEL,
    ) -> GenerationResult:
        """Ask the model for a rewritten prompt. Free text, not structured."""
        if not isinstance(evaluation, EvaluationResult):
            try:
                evaluation = EvaluationResult.model_validate(dict(evaluation))
            except (PydanticValidationError, TypeError, ValueError):
                raise ValidationError("optimize failed: evaluation is not a valid evaluation result")

        meta_prompt = build_optimize_prompt(
            prompt,
            total=evaluation.total,
            grade=evaluation.grade_label,
            weaknesses=evaluation.text_list("weaknesses"),
            suggestions=evaluation.text_list("suggestions"),
        )
        return await self._generate("optimize", meta_prompt, OPTIMIZE_SYSTEM_PROMPT, model)
