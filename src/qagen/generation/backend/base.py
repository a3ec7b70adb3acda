"""Backend interface for the model call."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol


@dataclass(slots=True)
class ChatCompletionRequest:
    """One non-streaming chat-completion request."""

    model: str
    messages: list[dict[str, str]]
    max_tokens: int
    temperature: float = 0.01
    stream: bool = False

    def to_payload(self) -> dict[str, object]:
        return {
            "model": self.model,
            "temperature": self.temperature,
            "messages": self.messages,
            "stream": self.stream,
            "max_tokens": self.max_tokens,
        }


@dataclass(slots=True)
class ChatCompletionResult:
    """Model answer text and reported usage."""

    content: str
    total_tokens: int = 0
    raw: dict[str, object] = field(default_factory=dict)


class ChatBackend(Protocol):
    """Protocol implemented by model clients.

    Implementations raise :class:`qagen.generation.errors.JobProcessingError`
    subclasses so that failures reach the retry policy already tagged.
    """

    def complete(self, request: ChatCompletionRequest) -> ChatCompletionResult:
        """Run one completion and return the answer."""
