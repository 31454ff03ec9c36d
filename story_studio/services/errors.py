from __future__ import annotations

from typing import Any, Dict, Optional

from api_handler import INVALID_CREDENTIALS, QUOTA_EXCEEDED, TIMEOUT

# Provider failure kinds that reach the caller with their own status code.
_KIND_STATUS = {
    QUOTA_EXCEEDED: 429,
    INVALID_CREDENTIALS: 401,
    TIMEOUT: 504,
    "MISSING_API_KEY": 500,
}


class StoryPipelineError(RuntimeError):
    """A fatal pipeline failure carrying the HTTP status it maps to."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int,
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    @classmethod
    def from_provider_kind(cls, kind: str, message: str) -> "StoryPipelineError":
        if kind in _KIND_STATUS:
            return cls(kind, message, _KIND_STATUS[kind])
        return cls("GENERATION_FAILED", message, 500, details={"kind": kind})

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": False, "error": self.message, "code": self.code}
        payload.update(self.details)
        return payload
