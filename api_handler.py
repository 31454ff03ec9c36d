# api_handler.py
from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
import openai

LOGGER = logging.getLogger(__name__)

QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
CONTENT_POLICY = "CONTENT_POLICY"
TIMEOUT = "TIMEOUT"
TRANSIENT = "TRANSIENT"
PROVIDER_ERROR = "PROVIDER_ERROR"
EMPTY_RESPONSE = "EMPTY_RESPONSE"

RETRYABLE_KINDS = frozenset({TIMEOUT, TRANSIENT})


class ProviderError(RuntimeError):
    """Raised when the completion or image provider rejects or fails a call."""

    def __init__(self, kind: str, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


@dataclass
class GeneratedImage:
    data: bytes
    revised_prompt: Optional[str] = None


def classify_provider_exception(exc: BaseException) -> ProviderError:
    """Map an SDK or transport exception onto a :class:`ProviderError` kind.

    Classification relies on exception types and the structured ``code`` the
    API returns, never on message text.
    """

    if isinstance(exc, ProviderError):
        return exc
    if isinstance(exc, openai.APITimeoutError):
        return ProviderError(TIMEOUT, "The provider took too long to respond.")
    if isinstance(exc, openai.APIConnectionError):
        return ProviderError(TRANSIENT, f"Could not reach the provider: {exc}")
    if isinstance(exc, openai.RateLimitError):
        return ProviderError(QUOTA_EXCEEDED, "Provider quota exceeded.", status_code=429)
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return ProviderError(
            INVALID_CREDENTIALS,
            "The provider rejected the configured credentials.",
            status_code=getattr(exc, "status_code", 401),
        )
    if isinstance(exc, openai.BadRequestError):
        if getattr(exc, "code", None) == "content_policy_violation":
            return ProviderError(CONTENT_POLICY, "The prompt was rejected by the content policy.", status_code=400)
        return ProviderError(PROVIDER_ERROR, f"The provider rejected the request: {exc}", status_code=400)
    if isinstance(exc, openai.APIStatusError):
        status = getattr(exc, "status_code", None)
        kind = TRANSIENT if status is not None and status >= 500 else PROVIDER_ERROR
        return ProviderError(kind, f"Provider returned HTTP {status}: {exc}", status_code=status)
    if isinstance(exc, httpx.TimeoutException):
        return ProviderError(TIMEOUT, "Downloading the generated image timed out.")
    if isinstance(exc, httpx.HTTPError):
        return ProviderError(TRANSIENT, f"Downloading the generated image failed: {exc}")
    return ProviderError(PROVIDER_ERROR, str(exc) or exc.__class__.__name__)


class OpenAIStoryClient:
    """
    Thin wrapper around the OpenAI SDK used by the story pipeline.

    - Chat Completions for the story text and illustration prompts
    - Images API for illustrations, returned as raw bytes whatever the
      requested response format

    Every SDK failure is re-raised as :class:`ProviderError`.
    """

    def __init__(self, api_key: str, *, timeout: float = 60.0, download_timeout: float = 30.0) -> None:
        self.api_key = (api_key or "").strip()
        if not self.api_key:
            raise ValueError("An OpenAI API key is required.")
        self.download_timeout = download_timeout
        self._client = openai.OpenAI(api_key=self.api_key, timeout=timeout, max_retries=0)

    # ---------------- public API ----------------
    def generate_text(
        self,
        *,
        model: str,
        system_prompt: str,
        user_prompt: str,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        if not isinstance(user_prompt, str) or not user_prompt.strip():
            raise ValueError("user_prompt must be a non-empty string.")

        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})

        kwargs: Dict[str, Any] = {"model": model, "messages": messages, "n": 1}
        if max_tokens is not None:
            kwargs["max_tokens"] = int(max_tokens)
        if temperature is not None:
            kwargs["temperature"] = float(temperature)

        try:
            resp = self._client.chat.completions.create(**kwargs)
        except Exception as exc:
            raise classify_provider_exception(exc) from exc

        text = self._extract_text_from_chat(resp).strip()
        if text:
            return text
        snippet = self._shorten_debug(str(resp))
        raise ProviderError(EMPTY_RESPONSE, f"Chat completion returned no text. Raw response (truncated): {snippet}")

    def generate_image(
        self,
        *,
        model: str,
        prompt: str,
        size: str,
        response_format: str = "b64_json",
        quality: Optional[str] = None,
    ) -> GeneratedImage:
        kwargs: Dict[str, Any] = {
            "model": model,
            "prompt": prompt,
            "size": size,
            "n": 1,
            "response_format": response_format,
        }
        if quality:
            kwargs["quality"] = quality

        try:
            resp = self._client.images.generate(**kwargs)
        except Exception as exc:
            raise classify_provider_exception(exc) from exc

        data = getattr(resp, "data", None) or []
        if not data:
            raise ProviderError(EMPTY_RESPONSE, "Image generation returned no images.")
        first = data[0]
        revised_prompt = getattr(first, "revised_prompt", None)

        b64_json = getattr(first, "b64_json", None)
        if b64_json:
            return GeneratedImage(data=base64.b64decode(b64_json), revised_prompt=revised_prompt)

        url = getattr(first, "url", None)
        if url:
            return GeneratedImage(data=self._download(url), revised_prompt=revised_prompt)

        raise ProviderError(EMPTY_RESPONSE, "Image generation returned neither data nor a URL.")

    def signature(self) -> str:
        # Never return raw secrets
        return (self.api_key[:4] + "…" + self.api_key[-4:]) if self.api_key else ""

    # ---------------- internal helpers ----------------
    def _download(self, url: str) -> bytes:
        LOGGER.debug("Downloading generated image from %s", url)
        try:
            response = httpx.get(url, timeout=self.download_timeout, follow_redirects=True)
            response.raise_for_status()
        except Exception as exc:
            raise classify_provider_exception(exc) from exc
        if not response.content:
            raise ProviderError(EMPTY_RESPONSE, "Downloaded image is empty.")
        return response.content

    def _extract_text_from_chat(self, resp: Any) -> str:
        choices = getattr(resp, "choices", []) or []
        if not choices:
            return ""
        first = choices[0]
        msg = getattr(first, "message", None)
        if isinstance(msg, dict):
            content = msg.get("content")
        else:
            content = getattr(msg, "content", None)
        if isinstance(content, list):
            parts: List[str] = []
            for p in content:
                if isinstance(p, dict) and p.get("type") == "text":
                    parts.append(str(p.get("text") or ""))
            return "\n".join([p for p in parts if p])
        return str(content or "")

    @staticmethod
    def _shorten_debug(s: str, limit: int = 1200) -> str:
        s = s.replace("\n", " ")
        return (s[:limit] + "…") if len(s) > limit else s
