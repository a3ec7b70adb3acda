"""OpenAI-compatible chat-completion client over httpx."""

from __future__ import annotations

import logging

import httpx

from qagen.generation.backend.base import ChatCompletionRequest, ChatCompletionResult
from qagen.generation.errors import (
    JobProcessingError,
    MalformedInputError,
    ModelTransportError,
    QuotaExhaustedError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 480.0
QUOTA_ERROR_CODES = frozenset(
    {"insufficient_quota", "billing_hard_limit_reached", "insufficient_balance"},
)
MALFORMED_INPUT_ERROR_CODES = frozenset({"invalid_message_format", "context_length_exceeded"})
_BODY_PREVIEW_CHARS = 500


class OpenAiChatBackend:
    """``POST {base_url}/chat/completions`` with structured error mapping."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._client = httpx.Client(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers={"Authorization": f"Bearer {api_key}"},
            transport=transport,
        )

    def complete(self, request: ChatCompletionRequest) -> ChatCompletionResult:
        try:
            response = self._client.post("chat/completions", json=request.to_payload())
        except httpx.TimeoutException as exc:
            raise ModelTransportError(
                f"Model call timed out after {self._timeout_seconds:g}s.",
            ) from exc
        except httpx.HTTPError as exc:
            raise ModelTransportError(f"Model call failed: {exc}") from exc

        if not response.is_success:
            error = _error_from_response(response)
            logger.info(
                "Model call rejected: status=%s kind=%s body=%s",
                response.status_code,
                error.kind.value,
                error.body,
            )
            raise error

        try:
            payload = response.json()
        except ValueError as exc:
            raise ModelTransportError(
                "Model response is not valid JSON.",
                status_code=response.status_code,
                body=response.text[:_BODY_PREVIEW_CHARS],
            ) from exc
        return _result_from_payload(payload, status_code=response.status_code)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> OpenAiChatBackend:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _result_from_payload(payload: object, *, status_code: int) -> ChatCompletionResult:
    if not isinstance(payload, dict):
        raise ModelTransportError(
            "Model response is not a JSON object.",
            status_code=status_code,
            body=payload,
        )
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        raise ModelTransportError(
            "Model response has no choices.",
            status_code=status_code,
            body=payload,
        )
    message = choices[0].get("message")
    content = message.get("content") if isinstance(message, dict) else None
    usage = payload.get("usage")
    total_tokens = usage.get("total_tokens") if isinstance(usage, dict) else None
    return ChatCompletionResult(
        content=content if isinstance(content, str) else "",
        total_tokens=total_tokens if isinstance(total_tokens, int) else 0,
        raw=payload,
    )


def _error_from_response(response: httpx.Response) -> JobProcessingError:
    body = _safe_json(response)
    error = body.get("error") if isinstance(body, dict) else None
    code = type_ = param = None
    if isinstance(error, dict):
        code = _string_field(error, "code")
        type_ = _string_field(error, "type")
        param = _string_field(error, "param")
    detail = body if body is not None else response.text[:_BODY_PREVIEW_CHARS]
    message = f"Model call returned HTTP {response.status_code}."

    if response.status_code == 402 or code in QUOTA_ERROR_CODES or type_ in QUOTA_ERROR_CODES:
        return QuotaExhaustedError(message, status_code=response.status_code, body=detail)
    if response.status_code == 400 and (
        code in MALFORMED_INPUT_ERROR_CODES
        or (param is not None and param.startswith("messages"))
    ):
        return MalformedInputError(message, status_code=response.status_code, body=detail)
    return ModelTransportError(message, status_code=response.status_code, body=detail)


def _safe_json(response: httpx.Response) -> object | None:
    try:
        return response.json()
    except ValueError:
        return None


def _string_field(payload: dict[object, object], key: str) -> str | None:
    value = payload.get(key)
    return value if isinstance(value, str) else None
