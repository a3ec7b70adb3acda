"""Chat-completion backend implementations."""

from qagen.generation.backend.base import ChatBackend, ChatCompletionRequest, ChatCompletionResult
from qagen.generation.backend.openai_http import OpenAiChatBackend

__all__ = [
    "ChatBackend",
    "ChatCompletionRequest",
    "ChatCompletionResult",
    "OpenAiChatBackend",
]
