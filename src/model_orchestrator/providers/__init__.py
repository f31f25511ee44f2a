from .base import (
    AdapterMetrics,
    BaseModelAdapter,
    ChatMessage,
    FinishReason,
    FunctionCall,
    MessageRole,
    ModelCapabilities,
    ModelFunction,
    ModelRequest,
    ModelResponse,
    ProviderConfig,
    RateLimitQuota,
    TokenUsage,
)
from .deepseek_provider import DeepSeekAdapter
from .rate_limiter import SlidingWindowRateLimiter
from .registry import PROVIDER_CATALOG, ProviderInfo, ProviderRegistry
from .zhipu_provider import ZhipuAdapter

__all__ = [
    "AdapterMetrics",
    "BaseModelAdapter",
    "ChatMessage",
    "FinishReason",
    "FunctionCall",
    "MessageRole",
    "ModelCapabilities",
    "ModelFunction",
    "ModelRequest",
    "ModelResponse",
    "ProviderConfig",
    "RateLimitQuota",
    "TokenUsage",
    "DeepSeekAdapter",
    "ZhipuAdapter",
    "SlidingWindowRateLimiter",
    "ProviderRegistry",
    "ProviderInfo",
    "PROVIDER_CATALOG",
]
