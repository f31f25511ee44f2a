"""
Base model adapter abstract class and common models for backend providers.
"""

import asyncio
import logging
import math
import time
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, computed_field
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..exceptions import (
    AdapterNotInitializedError,
    ConfigurationError,
    ProviderError,
    ProviderTimeoutError,
    RequestValidationError,
    StreamingNotSupportedError,
)
from .rate_limiter import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)


class MessageRole(str, Enum):
    """Message roles understood by every adapter."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    FUNCTION = "function"


class FinishReason(str, Enum):
    """Normalized termination reason."""

    STOP = "stop"
    LENGTH = "length"
    FUNCTION_CALL = "function_call"
    ERROR = "error"


class ModelCapabilities(BaseModel):
    """Capability flags used for routing decisions."""

    model_config = ConfigDict(frozen=True)

    reasoning: bool = False
    code_generation: bool = False
    multimodal: bool = False
    streaming: bool = False
    function_calling: bool = False


class RateLimitQuota(BaseModel):
    """Per-minute quota for one backend."""

    model_config = ConfigDict(frozen=True)

    requests_per_minute: int = Field(default=60, ge=1)
    tokens_per_minute: int = Field(default=100000, ge=0)


class ProviderConfig(BaseModel):
    """Immutable description of one configured backend."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    id: str = Field(..., description="Unique adapter identifier")
    name: str = Field(default="", description="Display name")
    provider: str = Field(..., description="Adapter type key (deepseek, zhipu, ...)")
    model: str = Field(..., description="Backend model identifier")
    endpoint: Optional[str] = Field(default=None, description="Base URL, adapter default when omitted")
    api_key: Optional[SecretStr] = Field(default=None, description="Backend credential")
    max_tokens: int = Field(default=4096, ge=1, description="Largest max_tokens a request may ask for")
    temperature: float = Field(default=0.7, ge=0, le=2, description="Sampling temperature when the request sets none")
    cost_per_token: float = Field(default=0.0, ge=0)
    capabilities: Optional[ModelCapabilities] = None
    context_length: Optional[int] = Field(default=None, ge=1)
    rate_limit: Optional[RateLimitQuota] = None
    timeout: float = Field(default=60.0, gt=0, description="HTTP timeout in seconds")


class ChatMessage(BaseModel):
    """A single role-tagged message."""

    model_config = ConfigDict(frozen=True)

    role: str = Field(..., description="Message role (system, user, assistant, function)")
    content: str = Field(..., description="Message content")
    name: Optional[str] = None


class ModelFunction(BaseModel):
    """Function/tool declaration offered to the model."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    parameters: Dict[str, Any] = Field(default_factory=dict)


class FunctionCall(BaseModel):
    """Structured function call returned by the model."""

    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ModelRequest(BaseModel):
    """One call's worth of messages and sampling parameters."""

    model_config = ConfigDict(frozen=True)

    messages: List[ChatMessage] = Field(default_factory=list)
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    stream: bool = False
    functions: Optional[List[ModelFunction]] = None


class TokenUsage(BaseModel):
    """Token usage statistics."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ModelResponse(BaseModel):
    """Normalized response from any adapter."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    content: str = ""
    finish_reason: Optional[FinishReason] = FinishReason.STOP
    usage: TokenUsage = Field(default_factory=TokenUsage)
    cost: float = 0.0
    response_time: float = Field(default=0.0, description="Wall-clock latency in milliseconds")
    function_call: Optional[FunctionCall] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class AdapterMetrics(BaseModel):
    """Call statistics owned and mutated by a single adapter."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_response_time: float = Field(default=0.0, description="Mean latency of successful calls (ms)")
    total_cost: float = 0.0
    last_request_at: Optional[datetime] = None

    @computed_field  # type: ignore[misc]
    @property
    def error_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.failed_requests / self.total_requests


class BaseModelAdapter(ABC):
    """Abstract base class for backend model adapters.

    Subclasses own every detail of their backend's wire format and expose the
    common request/response contract defined here.
    """

    provider_type: str = "base"
    default_endpoint: str = ""
    default_rate_limit = RateLimitQuota()
    default_context_length: int = 4096

    def __init__(self, config: ProviderConfig, connect_retries: int = 3):
        """
        Initialize the adapter.

        Args:
            config: Provider configuration; unset optional fields are filled
                from the adapter's defaults
            connect_retries: Attempts for the connectivity probe in initialize()
        """
        self.config = self._resolve_config(config)
        self.metrics = AdapterMetrics()
        self.rate_limiter = SlidingWindowRateLimiter(
            self.config.rate_limit.requests_per_minute,
            self.config.rate_limit.tokens_per_minute,
        )
        self.connect_retries = max(1, connect_retries)
        self._initialized = False

    def _resolve_config(self, config: ProviderConfig) -> ProviderConfig:
        updates: Dict[str, Any] = {}
        if config.endpoint is None:
            updates["endpoint"] = self.default_endpoint
        if config.capabilities is None:
            updates["capabilities"] = self.detect_capabilities(config.model)
        if config.context_length is None:
            updates["context_length"] = self.detect_context_length(config.model)
        if config.rate_limit is None:
            updates["rate_limit"] = self.default_rate_limit
        if not config.name:
            updates["name"] = config.id
        return config.model_copy(update=updates) if updates else config

    @property
    def id(self) -> str:
        return self.config.id

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def capabilities(self) -> ModelCapabilities:
        return self.config.capabilities  # type: ignore[return-value]

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def detect_capabilities(self, model: str) -> ModelCapabilities:
        return ModelCapabilities()

    def detect_context_length(self, model: str) -> int:
        return self.default_context_length

    # Lifecycle

    async def initialize(self) -> None:
        """
        Validate configuration and probe the backend once.

        Raises:
            ConfigurationError: If configuration is invalid or the backend is unreachable
        """
        if self._initialized:
            return

        self._validate_config()
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.connect_retries),
                wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
                retry=retry_if_exception_type(ProviderError),
                reraise=True,
            ):
                with attempt:
                    await self._test_connection()
        except Exception as e:
            await self._cleanup()
            raise ConfigurationError(
                f"Adapter {self.id} failed connectivity test: {e}", provider=self.id
            ) from e

        self._initialized = True
        logger.info(
            f"Adapter {self.id} initialized",
            extra={"provider": self.provider_type, "model": self.config.model},
        )

    async def shutdown(self) -> None:
        """Release network resources; the adapter must be re-initialized to be used again."""
        await self._cleanup()
        self._initialized = False
        logger.info(f"Adapter {self.id} shut down", extra={"provider": self.provider_type})

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise AdapterNotInitializedError(f"Adapter {self.id} is not initialized", provider=self.id)

    # Calls

    def validate_request(self, request: ModelRequest) -> None:
        """
        Reject requests that must never reach the network.

        Raises:
            RequestValidationError: On empty messages, excessive max_tokens or bad temperature
        """
        if not request.messages:
            raise RequestValidationError("Request must contain at least one message", field="messages")
        if request.max_tokens is not None and request.max_tokens > self.config.max_tokens:
            raise RequestValidationError(
                f"max_tokens {request.max_tokens} exceeds limit {self.config.max_tokens} for {self.id}",
                field="max_tokens",
            )
        if request.temperature is not None and not 0 <= request.temperature <= 2:
            raise RequestValidationError(
                f"temperature {request.temperature} is outside [0, 2]", field="temperature"
            )

    async def chat(self, request: ModelRequest, timeout: Optional[float] = None) -> ModelResponse:
        """
        Perform one rate-limited, metered call.

        Args:
            request: The request to send
            timeout: Optional deadline in seconds covering the rate-limit wait and the backend call

        Returns:
            ModelResponse with cost and latency filled in

        Raises:
            RequestValidationError: If the request is rejected before dispatch
            ProviderError: If the backend call fails or times out
        """
        self._ensure_initialized()
        self.validate_request(request)
        try:
            waited = await self.rate_limiter.acquire(timeout=timeout)
        except asyncio.TimeoutError as e:
            raise self._timeout_failure(f"{self.id} rate limit wait exceeds {timeout}s deadline", timeout) from e

        self._log_request(request)
        start_time = time.perf_counter()
        try:
            if timeout is not None:
                response = await asyncio.wait_for(self._send_request(request), timeout=max(timeout - waited, 0.0))
            else:
                response = await self._send_request(request)
        except asyncio.TimeoutError as e:
            self.rate_limiter.release()
            raise self._timeout_failure(f"{self.id} did not respond within {timeout}s", timeout) from e
        except ProviderError as e:
            self._record_failure()
            self._log_error(e)
            raise
        except Exception as e:
            self._record_failure()
            self._log_error(e)
            raise ProviderError(f"{self.id} call failed: {e}", provider=self.id) from e

        response_time = (time.perf_counter() - start_time) * 1000
        cost = self.calculate_cost(response.usage)
        response = response.model_copy(
            update={
                "response_time": response_time,
                "cost": cost,
                "metadata": {
                    **response.metadata,
                    "provider": self.id,
                    "model": self.config.model,
                },
            }
        )
        self.rate_limiter.record_tokens(response.usage.total_tokens)
        self._record_success(response_time, cost)
        self._log_response(response)
        return response

    def stream_chat(self, request: ModelRequest) -> AsyncIterator[ModelResponse]:
        """
        Stream partial responses.

        Capability and validation checks run immediately, before iteration starts.

        Raises:
            StreamingNotSupportedError: If the adapter cannot stream
        """
        self._ensure_initialized()
        if not self.capabilities.streaming:
            raise StreamingNotSupportedError(f"Adapter {self.id} does not support streaming", provider=self.id)
        self.validate_request(request)
        return self._metered_stream(request)

    async def _metered_stream(self, request: ModelRequest) -> AsyncIterator[ModelResponse]:
        await self.rate_limiter.acquire()
        self._log_request(request)
        start_time = time.perf_counter()
        usage = TokenUsage()
        try:
            async for chunk in self._send_stream_request(request):
                if chunk.usage.total_tokens:
                    usage = chunk.usage
                yield chunk.model_copy(
                    update={
                        "response_time": (time.perf_counter() - start_time) * 1000,
                        "metadata": {**chunk.metadata, "provider": self.id, "model": self.config.model},
                    }
                )
        except GeneratorExit:
            self._record_failure()
            logger.info(
                f"Stream from {self.id} closed before completion",
                extra={"provider": self.provider_type, "model": self.config.model},
            )
            raise
        except ProviderError as e:
            self._record_failure()
            self._log_error(e)
            raise
        except Exception as e:
            self._record_failure()
            self._log_error(e)
            raise ProviderError(f"{self.id} stream failed: {e}", provider=self.id) from e

        self.rate_limiter.record_tokens(usage.total_tokens)
        self._record_success((time.perf_counter() - start_time) * 1000, self.calculate_cost(usage))

    async def health_check(self) -> bool:
        """Send a minimal probe; never raises."""
        try:
            await self.chat(
                ModelRequest(
                    messages=[ChatMessage(role=MessageRole.USER.value, content="ping")],
                    max_tokens=5,
                    temperature=0,
                )
            )
            return True
        except Exception as e:
            logger.warning(
                f"Health check failed for {self.id}: {e}",
                extra={"provider": self.provider_type, "error_type": type(e).__name__},
            )
            return False

    def calculate_cost(self, usage: TokenUsage) -> float:
        return usage.total_tokens * self.config.cost_per_token

    def estimate_cost(self, request: ModelRequest) -> float:
        """Pre-flight estimate: ~4 characters per input token plus the requested output budget."""
        text = " ".join(message.content for message in request.messages)
        input_tokens = math.ceil(len(text) / 4)
        output_tokens = request.max_tokens or self.config.max_tokens
        return (input_tokens + output_tokens) * self.config.cost_per_token

    def get_metrics(self) -> AdapterMetrics:
        return self.metrics.model_copy()

    def get_rate_limit_usage(self) -> Dict[str, int]:
        return self.rate_limiter.get_usage()

    def get_model_info(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "provider": self.provider_type,
            "model": self.config.model,
            "capabilities": self.capabilities.model_dump(),
            "context_length": self.config.context_length,
            "cost_per_token": self.config.cost_per_token,
            "max_tokens": self.config.max_tokens,
        }

    # Metrics bookkeeping

    def _record_success(self, response_time: float, cost: float) -> None:
        metrics = self.metrics
        metrics.total_requests += 1
        metrics.successful_requests += 1
        metrics.average_response_time = (
            metrics.average_response_time * (metrics.successful_requests - 1) + response_time
        ) / metrics.successful_requests
        metrics.total_cost += cost
        metrics.last_request_at = datetime.utcnow()

    def _record_failure(self) -> None:
        self.metrics.total_requests += 1
        self.metrics.failed_requests += 1
        self.metrics.last_request_at = datetime.utcnow()

    def _timeout_failure(self, message: str, timeout: Optional[float]) -> ProviderTimeoutError:
        self._record_failure()
        error = ProviderTimeoutError(message, provider=self.id, timeout=timeout)
        self._log_error(error)
        return error

    # Backend hooks

    async def _test_connection(self) -> None:
        await self._send_request(
            ModelRequest(
                messages=[ChatMessage(role=MessageRole.USER.value, content="Hello")],
                max_tokens=5,
                temperature=0,
            )
        )

    @abstractmethod
    def _validate_config(self) -> None:
        """
        Check credentials and model before any network access.

        Raises:
            ConfigurationError: If the configuration cannot work
        """
        pass

    @abstractmethod
    async def _send_request(self, request: ModelRequest) -> ModelResponse:
        """
        Send one request to the backend and normalize the answer.

        Raises:
            ProviderError: If the backend call fails
        """
        pass

    @abstractmethod
    def _send_stream_request(self, request: ModelRequest) -> AsyncIterator[ModelResponse]:
        """Yield normalized partial responses; the last carries finish_reason and usage."""
        pass

    @abstractmethod
    async def _cleanup(self) -> None:
        pass

    # Logging

    def _log_request(self, request: ModelRequest) -> None:
        logger.info(
            f"Adapter {self.id} request",
            extra={
                "provider": self.provider_type,
                "model": self.config.model,
                "message_count": len(request.messages),
                "temperature": request.temperature,
                "max_tokens": request.max_tokens,
            },
        )

    def _log_response(self, response: ModelResponse) -> None:
        logger.info(
            f"Adapter {self.id} response",
            extra={
                "provider": self.provider_type,
                "model": self.config.model,
                "response_id": response.id,
                "duration_ms": response.response_time,
                "usage": response.usage.model_dump(),
                "cost": response.cost,
            },
        )

    def _log_error(self, error: Exception) -> None:
        logger.error(
            f"Adapter {self.id} error",
            extra={
                "provider": self.provider_type,
                "model": self.config.model,
                "error_type": type(error).__name__,
                "error_message": str(error),
            },
        )
