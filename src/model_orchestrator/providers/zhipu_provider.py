"""
Zhipu GLM adapter with tool calling, embeddings and GLM-4V image understanding.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx
import orjson

from ..exceptions import ProviderError, RequestValidationError
from .base import (
    ChatMessage,
    FinishReason,
    FunctionCall,
    MessageRole,
    ModelCapabilities,
    ModelRequest,
    ModelResponse,
    RateLimitQuota,
)
from .http_adapter import ChatCompletionsAdapter

logger = logging.getLogger(__name__)


class ZhipuAdapter(ChatCompletionsAdapter):
    """Zhipu AI GLM-4 family."""

    provider_type = "zhipu"
    default_endpoint = "https://open.bigmodel.cn/api/paas/v4"
    chat_path = "/chat/completions"
    default_rate_limit = RateLimitQuota(requests_per_minute=100, tokens_per_minute=300000)
    supported_models = ["glm-4", "glm-4-plus", "glm-4-air", "glm-4-airx", "glm-4-long", "glm-4v"]

    VISION_MODEL = "glm-4v"
    LONG_CONTEXT_MODEL = "glm-4-long"

    FINISH_REASONS = {
        "stop": FinishReason.STOP,
        "length": FinishReason.LENGTH,
        "tool_calls": FinishReason.FUNCTION_CALL,
    }

    def detect_capabilities(self, model: str) -> ModelCapabilities:
        return ModelCapabilities(
            reasoning=True,
            code_generation=True,
            multimodal=model == self.VISION_MODEL,
            streaming=True,
            function_calling=True,
        )

    def detect_context_length(self, model: str) -> int:
        return 1_000_000 if model == self.LONG_CONTEXT_MODEL else 128000

    def _build_payload(self, request: ModelRequest, stream: bool = False) -> Dict[str, Any]:
        payload = self._base_payload(request, stream)
        payload.update({"top_p": 0.7, "do_sample": True})

        if request.functions:
            payload["tools"] = [
                {"type": "function", "function": function.model_dump()} for function in request.functions
            ]
            payload["tool_choice"] = "auto"

        return payload

    def _map_finish_reason(self, reason: Optional[str]) -> FinishReason:
        return self.FINISH_REASONS.get(reason or "", FinishReason.ERROR)

    def _parse_function_call(self, message: Dict[str, Any]) -> Optional[FunctionCall]:
        tool_calls = message.get("tool_calls") or []
        if not tool_calls or tool_calls[0].get("type") != "function":
            return None
        function = tool_calls[0].get("function") or {}
        return FunctionCall(
            name=function.get("name", ""),
            arguments=self._parse_arguments(function.get("arguments")),
        )

    async def get_available_models(self) -> List[str]:
        """List models the account can use, falling back to the known set."""
        try:
            response = await self._get_client().get("/models")
            response.raise_for_status()
            return [model["id"] for model in response.json().get("data", [])]
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.warning(f"Could not list Zhipu models: {e}", extra={"provider": self.provider_type})
            return list(self.supported_models)

    async def create_embedding(self, text: str, model: str = "embedding-2") -> List[float]:
        """
        Create a text embedding.

        Raises:
            ProviderError: If the embeddings endpoint fails
        """
        self._ensure_initialized()
        try:
            response = await self._get_client().post("/embeddings", json={"model": model, "input": text})
            response.raise_for_status()
            return response.json()["data"][0]["embedding"]
        except httpx.HTTPStatusError as e:
            raise self._status_error(e) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"zhipu embedding request failed: {e}", provider=self.id) from e
        except (ValueError, KeyError, IndexError) as e:
            raise ProviderError("zhipu embedding response is malformed", provider=self.id, retryable=False) from e

    async def analyze_image(self, image_url: str, prompt: str) -> ModelResponse:
        """
        Describe an image; only available on GLM-4V.

        Raises:
            RequestValidationError: If the configured model has no vision support
        """
        if self.config.model != self.VISION_MODEL:
            raise RequestValidationError(
                f"Image understanding requires {self.VISION_MODEL}, adapter uses {self.config.model}",
                field="model",
            )
        content = orjson.dumps(
            [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": image_url}},
            ]
        ).decode()
        return await self.chat(
            ModelRequest(messages=[ChatMessage(role=MessageRole.USER.value, content=content)])
        )
