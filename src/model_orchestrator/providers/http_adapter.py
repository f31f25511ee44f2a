"""
Shared httpx transport for backends that expose a chat-completions endpoint.
"""

import logging
import uuid
from abc import abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
import orjson

from ..exceptions import ConfigurationError, ProviderError, ProviderTimeoutError
from .base import (
    BaseModelAdapter,
    ChatMessage,
    FinishReason,
    FunctionCall,
    ModelRequest,
    ModelResponse,
    ProviderConfig,
    TokenUsage,
)
from .streaming_mixin import StreamingMixin

logger = logging.getLogger(__name__)

NON_RETRYABLE_STATUS = {400, 401, 403, 404, 422}


class ChatCompletionsAdapter(BaseModelAdapter, StreamingMixin):
    """Adapter base for OpenAI-style `/chat/completions` backends."""

    chat_path: str = "/chat/completions"
    supported_models: List[str] = []

    def __init__(
        self,
        config: ProviderConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        connect_retries: int = 3,
    ):
        """
        Initialize the adapter.

        Args:
            config: Provider configuration
            transport: Optional httpx transport, e.g. httpx.MockTransport in tests
            connect_retries: Attempts for the connectivity probe
        """
        BaseModelAdapter.__init__(self, config, connect_retries=connect_retries)
        StreamingMixin.__init__(self)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _validate_config(self) -> None:
        api_key = self.config.api_key.get_secret_value() if self.config.api_key else ""
        if not api_key:
            raise ConfigurationError(f"{self.provider_type} API key is not configured", provider=self.id)
        if not self.config.model:
            raise ConfigurationError(f"{self.provider_type} model is not specified", provider=self.id)
        if self.config.model not in self.supported_models:
            raise ConfigurationError(
                f"Unsupported {self.provider_type} model: {self.config.model}", provider=self.id
            )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            api_key = self.config.api_key.get_secret_value() if self.config.api_key else ""
            self._client = httpx.AsyncClient(
                base_url=self.config.endpoint or self.default_endpoint,
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.config.timeout,
                transport=self._transport,
            )
        return self._client

    async def _cleanup(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # Wire formatting

    def _format_message(self, message: ChatMessage) -> Dict[str, Any]:
        formatted: Dict[str, Any] = {"role": message.role, "content": message.content}
        if message.name:
            formatted["name"] = message.name
        return formatted

    def _base_payload(self, request: ModelRequest, stream: bool) -> Dict[str, Any]:
        return {
            "model": self.config.model,
            "messages": [self._format_message(m) for m in request.messages],
            "max_tokens": request.max_tokens or self.config.max_tokens,
            "temperature": request.temperature if request.temperature is not None else self.config.temperature,
            "stream": stream,
        }

    @abstractmethod
    def _build_payload(self, request: ModelRequest, stream: bool = False) -> Dict[str, Any]:
        pass

    @abstractmethod
    def _map_finish_reason(self, reason: Optional[str]) -> FinishReason:
        pass

    @abstractmethod
    def _parse_function_call(self, message: Dict[str, Any]) -> Optional[FunctionCall]:
        pass

    @staticmethod
    def _parse_usage(usage: Optional[Dict[str, Any]]) -> TokenUsage:
        usage = usage or {}
        prompt_tokens = usage.get("prompt_tokens") or 0
        completion_tokens = usage.get("completion_tokens") or 0
        return TokenUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=usage.get("total_tokens") or prompt_tokens + completion_tokens,
        )

    @staticmethod
    def _parse_arguments(raw: Any) -> Dict[str, Any]:
        if isinstance(raw, dict):
            return raw
        if not raw:
            return {}
        try:
            parsed = orjson.loads(raw)
        except orjson.JSONDecodeError:
            logger.warning(f"Function call arguments are not valid JSON: {str(raw)[:80]}")
            return {"raw": raw}
        return parsed if isinstance(parsed, dict) else {"value": parsed}

    def _parse_response(self, data: Dict[str, Any]) -> ModelResponse:
        try:
            choice = data["choices"][0]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(
                f"{self.provider_type} response is missing choices", provider=self.id, retryable=False
            ) from e

        message = choice.get("message") or {}
        return ModelResponse(
            id=data.get("id") or str(uuid.uuid4()),
            content=message.get("content") or "",
            finish_reason=self._map_finish_reason(choice.get("finish_reason")),
            usage=self._parse_usage(data.get("usage")),
            function_call=self._parse_function_call(message),
            metadata={"backend_model": data.get("model"), "created": data.get("created")},
        )

    def _parse_stream_chunk(self, payload: Dict[str, Any]) -> Optional[ModelResponse]:
        choices = payload.get("choices") or []
        choice = choices[0] if choices else {}
        delta = choice.get("delta") or {}
        raw_finish = choice.get("finish_reason")
        usage = payload.get("usage")

        if not delta.get("content") and raw_finish is None and usage is None:
            return None

        return ModelResponse(
            id=payload.get("id") or str(uuid.uuid4()),
            content=delta.get("content") or "",
            finish_reason=self._map_finish_reason(raw_finish) if raw_finish is not None else None,
            usage=self._parse_usage(usage),
            metadata={"final": raw_finish is not None},
        )

    # Transport

    def _status_error(self, error: httpx.HTTPStatusError) -> ProviderError:
        status = error.response.status_code
        body = error.response.text[:200] if error.response.text else ""
        return ProviderError(
            f"{self.provider_type} API error [{status}]: {body}",
            provider=self.id,
            status_code=status,
            retryable=status not in NON_RETRYABLE_STATUS,
        )

    async def _send_request(self, request: ModelRequest) -> ModelResponse:
        payload = self._build_payload(request, stream=False)
        try:
            response = await self._get_client().post(self.chat_path, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(
                f"{self.provider_type} request timed out", provider=self.id, timeout=self.config.timeout
            ) from e
        except httpx.HTTPStatusError as e:
            raise self._status_error(e) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"{self.provider_type} connection failed: {e}", provider=self.id) from e
        except ValueError as e:
            raise ProviderError(
                f"{self.provider_type} returned a non-JSON body", provider=self.id, retryable=False
            ) from e

        return self._parse_response(data)

    async def _send_stream_request(self, request: ModelRequest) -> AsyncIterator[ModelResponse]:
        payload = self._build_payload(request, stream=True)
        try:
            async with self._get_client().stream("POST", self.chat_path, json=payload) as response:
                if response.status_code >= 400:
                    await response.aread()
                    response.raise_for_status()
                async for event in self._iter_sse_payloads(response):
                    chunk = self._parse_stream_chunk(event)
                    if chunk is not None:
                        yield chunk
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(
                f"{self.provider_type} stream timed out", provider=self.id, timeout=self.config.timeout
            ) from e
        except httpx.HTTPStatusError as e:
            raise self._status_error(e) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"{self.provider_type} stream failed: {e}", provider=self.id) from e
