"""
DeepSeek adapter.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from .base import FinishReason, FunctionCall, ModelCapabilities, ModelRequest, RateLimitQuota
from .http_adapter import ChatCompletionsAdapter

logger = logging.getLogger(__name__)


class DeepSeekAdapter(ChatCompletionsAdapter):
    """DeepSeek chat and coder models."""

    provider_type = "deepseek"
    default_endpoint = "https://api.deepseek.com"
    chat_path = "/v1/chat/completions"
    default_rate_limit = RateLimitQuota(requests_per_minute=60, tokens_per_minute=200000)
    supported_models = ["deepseek-chat", "deepseek-coder"]

    FINISH_REASONS = {
        "stop": FinishReason.STOP,
        "length": FinishReason.LENGTH,
        "function_call": FinishReason.FUNCTION_CALL,
    }

    def detect_capabilities(self, model: str) -> ModelCapabilities:
        return ModelCapabilities(
            reasoning=True,
            code_generation=True,
            multimodal=False,
            streaming=True,
            function_calling=True,
        )

    def detect_context_length(self, model: str) -> int:
        return 32768 if model == "deepseek-chat" else 16384

    def _build_payload(self, request: ModelRequest, stream: bool = False) -> Dict[str, Any]:
        payload = self._base_payload(request, stream)
        payload.update({"top_p": 1, "frequency_penalty": 0, "presence_penalty": 0})

        if request.functions:
            payload["functions"] = [function.model_dump() for function in request.functions]
            payload["function_call"] = "auto"

        return payload

    def _map_finish_reason(self, reason: Optional[str]) -> FinishReason:
        return self.FINISH_REASONS.get(reason or "", FinishReason.ERROR)

    def _parse_function_call(self, message: Dict[str, Any]) -> Optional[FunctionCall]:
        function_call = message.get("function_call")
        if not function_call:
            return None
        return FunctionCall(
            name=function_call.get("name", ""),
            arguments=self._parse_arguments(function_call.get("arguments")),
        )

    async def get_available_models(self) -> List[str]:
        """List models the account can use, falling back to the known set."""
        try:
            response = await self._get_client().get("/v1/models")
            response.raise_for_status()
            return [model["id"] for model in response.json().get("data", [])]
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.warning(f"Could not list DeepSeek models: {e}", extra={"provider": self.provider_type})
            return list(self.supported_models)
