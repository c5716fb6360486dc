"""
VIBE Router — Provider Contract over LiteLLM

Agents call `router.chat(messages, role=...)` and get a ChatResponse
back, or a ProviderError that says whether retrying could help. The
router resolves the role to a model, applies the timeout, retries
retryable failures with exponential backoff, and logs each call.
"""

from __future__ import annotations

import time
from typing import Any, Protocol, runtime_checkable

import litellm
from loguru import logger
from pydantic import BaseModel, Field
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from vibe.config_loader import VibeConfig
from vibe.errors import ConfigurationError, ProviderError


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------

class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatResponse(BaseModel):
    content: str
    usage: Usage = Field(default_factory=Usage)
    model: str
    provider: str
    latency_ms: int = 0


@runtime_checkable
class ChatProvider(Protocol):
    def chat(
        self,
        messages: list[dict[str, str]],
        *,
        role: str = "planner",
        temperature: float | None = None,
        max_tokens: int | None = None,
        response_format: dict | None = None,
    ) -> ChatResponse:
        ...


# ---------------------------------------------------------------------------
# Model capability helpers
# ---------------------------------------------------------------------------

def _provider_of(model: str) -> str:
    return model.split("/", 1)[0] if "/" in model else "openai"


def _drops_temperature(model: str) -> bool:
    """GPT-5 and o-series reasoning models reject a custom temperature."""
    normalized = model.lower().replace("openai/", "")
    return normalized.startswith(("gpt-5", "o1", "o3", "o4"))


def _build_kwargs(
    model: str,
    messages: list[dict[str, str]],
    temperature: float,
    max_tokens: int,
    response_format: dict | None,
    timeout: float,
) -> dict[str, Any]:
    kwargs: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "max_tokens": max_tokens,
        "timeout": timeout,
    }
    if not _drops_temperature(model):
        kwargs["temperature"] = temperature
    if response_format:
        kwargs["response_format"] = response_format
    return kwargs


_RETRYABLE_ERRORS: tuple[type[Exception], ...] = (
    litellm.RateLimitError,
    litellm.Timeout,
    litellm.APIConnectionError,
    litellm.ServiceUnavailableError,
    litellm.InternalServerError,
)

_FATAL_ERRORS: tuple[type[Exception], ...] = (
    litellm.AuthenticationError,
    litellm.BadRequestError,
    litellm.NotFoundError,
    litellm.PermissionDeniedError,
)


def to_provider_error(exc: Exception, model: str) -> ProviderError:
    """Map a LiteLLM (or transport) exception onto the ProviderError taxonomy."""
    status = getattr(exc, "status_code", None)
    if isinstance(exc, _FATAL_ERRORS):
        retryable = False
    elif isinstance(exc, _RETRYABLE_ERRORS):
        retryable = True
    else:
        retryable = isinstance(status, int) and (status == 429 or status >= 500)
    return ProviderError(
        f"{type(exc).__name__}: {exc}",
        provider=_provider_of(model),
        model=model,
        status_code=status if isinstance(status, int) else None,
        retryable=retryable,
    )


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ProviderError) and exc.retryable


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

class Router:
    """
    Vendor-agnostic model router.

    Roles map to models through `config.routing`; an unknown role is a
    configuration error, not a provider failure.
    """

    def __init__(self, config: VibeConfig):
        self.config = config
        self._role_model_map = {
            "planner": config.routing.planner,
            "reviewer": config.routing.reviewer,
        }
        litellm.suppress_debug_info = True

    def resolve_model(self, role: str) -> str:
        model = self._role_model_map.get(role)
        if not model:
            raise ConfigurationError(f"Unknown agent role: {role}. Known: {list(self._role_model_map)}")
        return model

    def chat(
        self,
        messages: list[dict[str, str]],
        *,
        role: str = "planner",
        temperature: float | None = None,
        max_tokens: int | None = None,
        response_format: dict | None = None,
    ) -> ChatResponse:
        """Send one chat completion; retries only failures marked retryable."""
        model = self.resolve_model(role)
        provider = self.config.provider
        kwargs = _build_kwargs(
            model,
            messages,
            provider.temperature if temperature is None else temperature,
            provider.max_tokens if max_tokens is None else max_tokens,
            response_format,
            provider.timeout_seconds,
        )

        retrying = Retrying(
            stop=stop_after_attempt(provider.max_retries),
            wait=wait_exponential(min=1, max=10),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                return self._complete(model, kwargs, attempt.retry_state.attempt_number)
        raise ProviderError("No attempt was made", provider=_provider_of(model), model=model)

    def _complete(self, model: str, kwargs: dict[str, Any], attempt: int) -> ChatResponse:
        start = time.monotonic()
        logger.debug(f"[ROUTER] → {model} ({len(kwargs['messages'])} messages, attempt {attempt})")

        try:
            response = litellm.completion(**kwargs)
        except Exception as e:
            error = to_provider_error(e, model)
            logger.warning(f"[ROUTER] {model} failed (retryable={error.retryable}): {e}")
            raise error from e

        elapsed_ms = int((time.monotonic() - start) * 1000)
        raw_usage = getattr(response, "usage", None)
        usage = Usage(
            prompt_tokens=getattr(raw_usage, "prompt_tokens", 0) or 0,
            completion_tokens=getattr(raw_usage, "completion_tokens", 0) or 0,
            total_tokens=getattr(raw_usage, "total_tokens", 0) or 0,
        )
        content = response.choices[0].message.content or ""

        logger.debug(f"[ROUTER] ← {model} {usage.total_tokens} tokens, {elapsed_ms}ms")
        return ChatResponse(
            content=content,
            usage=usage,
            model=model,
            provider=_provider_of(model),
            latency_ms=elapsed_ms,
        )
