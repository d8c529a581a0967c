"""LiteLLM chat-completion client with retry and error classification.

All completion calls route through this module. LiteLLM's built-in retry is
used (``num_retries``). Provider exceptions are mapped onto four classes so
callers can react without importing LiteLLM:

  RateLimited     429, back off and retry later
  InvalidRequest  400/404, the request itself is wrong; do not retry
  AuthError       401/403, missing or rejected API key
  TransientError  timeouts, connection errors, 5xx
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any

import litellm

litellm.suppress_debug_info = True

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "google": "GOOGLE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "ollama": None,  # local, no key required
    "ollama_chat": None,
}

_SYSTEM_PROMPT = (
    "You are a helpful assistant answering questions from visitors of a developer's "
    "portfolio website. Keep responses concise, informative, and friendly."
)
_SYSTEM_PROMPT_WITH_CODE = (
    "You are a helpful assistant answering questions from visitors of a developer's "
    "portfolio website. You have been provided with relevant code snippets from the "
    "repository to help answer questions about the code. Refer to these code snippets "
    "when answering questions about how the code works. Keep responses concise, "
    "informative, and friendly."
)


# ------------------------------------------------------------------
# Errors
# ------------------------------------------------------------------


class CompletionError(Exception):
    """Base class for classified completion failures."""

    status_code: int | None = None

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class RateLimited(CompletionError):
    status_code = 429


class InvalidRequest(CompletionError):
    status_code = 400


class AuthError(CompletionError):
    status_code = 401


class TransientError(CompletionError):
    status_code = 503


def classify_error(exc: Exception) -> CompletionError:
    """Map a LiteLLM/provider exception onto the CompletionError taxonomy."""
    message = str(exc) or type(exc).__name__
    if isinstance(exc, CompletionError):
        return exc
    if isinstance(exc, litellm.RateLimitError):
        return RateLimited(message)
    if isinstance(exc, litellm.AuthenticationError):
        return AuthError(message, getattr(exc, "status_code", None))
    if isinstance(exc, (litellm.BadRequestError, litellm.NotFoundError)):
        return InvalidRequest(message, getattr(exc, "status_code", None))
    if isinstance(exc, (litellm.Timeout, litellm.APIConnectionError)):
        return TransientError(message)

    status = getattr(exc, "status_code", None)
    if status == 429:
        return RateLimited(message)
    if status in (401, 403):
        return AuthError(message, status)
    if status in (400, 404, 422):
        return InvalidRequest(message, status)
    if isinstance(exc, TimeoutError) or "timeout" in message.lower():
        return TransientError(message)
    return TransientError(message, status if isinstance(status, int) else None)


# ------------------------------------------------------------------
# API keys
# ------------------------------------------------------------------


def provider_env_var(model: str) -> str | None:
    """Environment variable holding the API key for *model*'s provider.

    Unprefixed model names are treated as OpenAI models. Returns None for
    providers that need no key.
    """
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    if provider in _PROVIDER_ENV:
        return _PROVIDER_ENV[provider]
    return f"{provider.upper()}_API_KEY"


def has_api_key(model: str) -> bool:
    env_var = provider_env_var(model)
    return env_var is None or bool(os.getenv(env_var))


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    env_var = provider_env_var(model)
    if env_var is None:
        return
    if not os.getenv(env_var):
        provider = model.split("/")[0].lower() if "/" in model else "openai"
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


# ------------------------------------------------------------------
# Completion
# ------------------------------------------------------------------


@dataclass
class Completion:
    text: str
    model: str
    usage: dict[str, int] = field(default_factory=dict)
    duration_ms: int = 0


def create_system_prompt(using_repo_context: bool) -> str:
    """System prompt for the chatbot; mentions code snippets only when present."""
    return _SYSTEM_PROMPT_WITH_CODE if using_repo_context else _SYSTEM_PROMPT


def development_answer(question: str) -> str:
    """Placeholder answer used when no completion API key is configured."""
    return f"[DEVELOPMENT MODE] API key not configured. Your question was: \"{question}\""


def complete(
    system_prompt: str,
    user_prompt: str,
    *,
    model: str,
    temperature: float = 0.7,
    max_tokens: int = 500,
    num_retries: int = 3,
) -> Completion:
    """Call litellm.completion() with retry/backoff.

    Args:
        system_prompt: System message.
        user_prompt: User message (typically an enhanced question).
        model: LiteLLM model string (provider/model format).
        temperature: Sampling temperature.
        max_tokens: Maximum output tokens.
        num_retries: Retries on transient errors (exponential backoff).

    Returns:
        The first choice's text plus token usage.

    Raises:
        CompletionError: A classified provider failure (after retries).
    """
    started = time.monotonic()
    try:
        response = litellm.completion(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            max_tokens=max_tokens,
            temperature=temperature,
            num_retries=num_retries,
        )
    except Exception as exc:
        classified = classify_error(exc)
        logger.warning("Completion failed (%s): %s", type(classified).__name__, classified)
        raise classified from exc

    duration_ms = int((time.monotonic() - started) * 1000)
    return Completion(
        text=response.choices[0].message.content or "",
        model=getattr(response, "model", None) or model,
        usage=_usage_dict(getattr(response, "usage", None)),
        duration_ms=duration_ms,
    )


def _usage_dict(usage: Any) -> dict[str, int]:
    if usage is None:
        return {}
    result: dict[str, int] = {}
    for key in ("prompt_tokens", "completion_tokens", "total_tokens"):
        value = usage.get(key) if isinstance(usage, dict) else getattr(usage, key, None)
        if isinstance(value, int):
            result[key] = value
    return result
