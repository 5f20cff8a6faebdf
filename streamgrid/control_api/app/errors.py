from __future__ import annotations

from typing import Optional


class ApiError(Exception):
    """Rendered as ``{"error": ..., "message": ...}`` with ``status_code``."""

    def __init__(self, status_code: int, error: str, message: Optional[str] = None,
                 headers: Optional[dict[str, str]] = None):
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.message = message
        self.headers = headers

    def body(self) -> dict[str, str]:
        out = {"error": self.error}
        if self.message:
            out["message"] = self.message
        return out


class ValidationError(ApiError):
    def __init__(self, error: str):
        super().__init__(400, error)


class NotFoundError(ApiError):
    def __init__(self, error: str):
        super().__init__(404, error)


class ServiceUnavailable(ApiError):
    def __init__(self, error: str = "Application not ready", message: Optional[str] = None):
        super().__init__(503, error, message)


class RateLimited(ApiError):
    def __init__(self, retry_after_s: int):
        super().__init__(
            429,
            "Too many requests",
            "Rate limit exceeded. Try again later.",
            headers={"Retry-After": str(retry_after_s)},
        )
