"""Shared access to the provider client, prompt configuration and retries."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Dict, Optional, TypeVar

from flask import current_app
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_fixed

from api_handler import OpenAIStoryClient, ProviderError, classify_provider_exception

from .settings import PipelineSettings

PROMPT_CACHE_KEY = "_PROMPT_CONFIG_CACHE"
CLIENT_INSTANCE_KEY = "_STORY_CLIENT_INSTANCE"

T = TypeVar("T")


class PromptConfigurationError(RuntimeError):
    """Raised when ``prompt_config.json`` is missing or malformed."""


def _load_prompt_entry(key: str) -> Dict[str, Any]:
    config = _load_prompt_config()
    try:
        entry = config[key]
    except KeyError as exc:  # pragma: no cover - configuration issues are caught at runtime
        raise PromptConfigurationError(f"Prompt configuration is missing the '{key}' entry.") from exc
    if not isinstance(entry, dict):
        raise PromptConfigurationError(f"Prompt configuration entry '{key}' must be a dictionary.")
    return entry


def _load_prompt_config() -> Dict[str, Any]:
    app = current_app
    cached = app.config.get(PROMPT_CACHE_KEY)
    if isinstance(cached, dict):
        return cached

    config_path = app.config.get("PROMPT_CONFIG_PATH")
    if not config_path:
        raise PromptConfigurationError("PROMPT_CONFIG_PATH is not configured.")

    path = Path(config_path)
    if not path.exists():
        raise PromptConfigurationError(f"Prompt configuration file not found at: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            data = json.load(fh)
        except json.JSONDecodeError as exc:  # pragma: no cover - malformed file should be obvious at runtime
            raise PromptConfigurationError(f"Unable to parse prompt configuration: {exc.msg}") from exc

    if not isinstance(data, dict):
        raise PromptConfigurationError("Prompt configuration must be a JSON object.")

    app.config[PROMPT_CACHE_KEY] = data
    return data


_GENERATION_PARAMETER_KEYS = {"max_tokens", "temperature"}


def _extract_generation_parameters(parameters: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Filter a raw parameters dictionary to kwargs supported by the completion call."""

    if not isinstance(parameters, dict):
        return {}

    kwargs: Dict[str, Any] = {}
    for key in _GENERATION_PARAMETER_KEYS:
        if key in parameters and parameters[key] is not None:
            kwargs[key] = parameters[key]
    return kwargs


def _get_story_client() -> Optional[Any]:  # pragma: no cover - integration point
    app = current_app
    if CLIENT_INSTANCE_KEY in app.config:
        return app.config[CLIENT_INSTANCE_KEY]

    api_key = app.config.get("OPENAI_API_KEY")
    if not api_key:
        app.logger.info("OPENAI_API_KEY not configured; provider client unavailable.")
        return None

    client = OpenAIStoryClient(api_key, timeout=float(app.config.get("OPENAI_TIMEOUT", 60.0)))
    app.logger.info("Initialised OpenAI client (key %s).", client.signature())
    app.config[CLIENT_INSTANCE_KEY] = client
    return client


def call_with_retry(
    func: Callable[..., T],
    settings: PipelineSettings,
    *,
    label: str,
    **kwargs: Any,
) -> T:
    """Call ``func`` and retry transient provider failures with a fixed delay.

    Non-provider exceptions are classified first so that callers only ever see
    :class:`ProviderError`. Quota, credential and content-policy errors are
    raised on the first attempt.
    """

    logger = current_app.logger

    def _attempt() -> T:
        try:
            return func(**kwargs)
        except ProviderError:
            raise
        except Exception as exc:
            raise classify_provider_exception(exc) from exc

    def _log_retry(retry_state) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "%s failed (attempt %d of %d): %s; retrying in %.1fs",
            label,
            retry_state.attempt_number,
            settings.retry_attempts + 1,
            exc,
            settings.retry_delay,
        )

    retrying = Retrying(
        stop=stop_after_attempt(settings.retry_attempts + 1),
        wait=wait_fixed(settings.retry_delay),
        retry=retry_if_exception(lambda exc: isinstance(exc, ProviderError) and exc.retryable),
        before_sleep=_log_retry,
        reraise=True,
    )
    return retrying(_attempt)


__all__ = [
    "PromptConfigurationError",
    "_extract_generation_parameters",
    "_get_story_client",
    "_load_prompt_entry",
    "call_with_retry",
]
