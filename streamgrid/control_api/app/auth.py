# SPDX-License-Identifier: Apache-2.0
"""API key gate for the control API.

Checks run in a fixed order: service disabled (503), no key (401), wrong key
(403). A key is accepted from ``X-API-Key`` or ``Authorization: Bearer <key>``.
"""
from __future__ import annotations

import enum
import hmac
import logging
import secrets
import threading
from typing import Mapping, Optional

from fastapi import Request
from pydantic import BaseModel

from .errors import ApiError

LOG = logging.getLogger("sg.api.auth")


def generate_api_key() -> str:
    """32 random bytes as 64 lowercase hex chars."""
    return secrets.token_hex(32)


class AuthConfig(BaseModel):
    api_key: str = ""
    enabled: bool = False


class AuthDecision(enum.Enum):
    ALLOW = "allow"
    SERVICE_DISABLED = "service_disabled"
    MISSING_CREDENTIAL = "missing_credential"
    INVALID_CREDENTIAL = "invalid_credential"


_REJECTIONS = {
    AuthDecision.SERVICE_DISABLED: (
        503, "API is disabled", "The REST API is currently disabled. Enable it in settings."),
    AuthDecision.MISSING_CREDENTIAL: (
        401, "Missing API key", "Provide API key in X-API-Key header or Authorization: Bearer <key>"),
    AuthDecision.INVALID_CREDENTIAL: (
        403, "Invalid API key", "The provided API key is invalid"),
}


class AuthError(ApiError):
    def __init__(self, decision: AuthDecision):
        status, error, message = _REJECTIONS[decision]
        super().__init__(status, error, message)
        self.decision = decision


def extract_key(headers: Mapping[str, str]) -> Optional[str]:
    key = headers.get("x-api-key")
    if key:
        return key
    auth = headers.get("authorization") or ""
    if auth.startswith("Bearer "):
        return auth[len("Bearer "):].strip() or None
    return None


class AuthGate:
    """Holds the one process-wide ``AuthConfig``. Updates are last-write-wins."""

    def __init__(self, api_key: str = "", enabled: bool = False):
        self._lock = threading.Lock()
        self._config = AuthConfig(api_key=api_key, enabled=enabled)

    def config(self) -> AuthConfig:
        with self._lock:
            return self._config.model_copy()

    def update(self, *, api_key: Optional[str] = None, enabled: Optional[bool] = None) -> AuthConfig:
        changes = {}
        if api_key is not None:
            changes["api_key"] = api_key
        if enabled is not None:
            changes["enabled"] = enabled
        with self._lock:
            self._config = self._config.model_copy(update=changes)
            return self._config.model_copy()

    def regenerate(self) -> str:
        key = generate_api_key()
        self.update(api_key=key)
        LOG.info("API key regenerated")
        return key

    def authenticate(self, provided_key: Optional[str]) -> AuthDecision:
        cfg = self.config()
        if not cfg.enabled:
            return AuthDecision.SERVICE_DISABLED
        if not provided_key:
            return AuthDecision.MISSING_CREDENTIAL
        if not cfg.api_key or not hmac.compare_digest(
            provided_key.encode("utf-8"), cfg.api_key.encode("utf-8")
        ):
            return AuthDecision.INVALID_CREDENTIAL
        return AuthDecision.ALLOW


async def require_api_key(request: Request) -> None:
    gate: AuthGate = request.app.state.auth_gate
    decision = gate.authenticate(extract_key(request.headers))
    if decision is not AuthDecision.ALLOW:
        LOG.info("Rejected %s %s: %s", request.method, request.url.path, decision.value)
        raise AuthError(decision)
