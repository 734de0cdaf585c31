"""
Auth gate: validates the caller's bearer credential before any provider call.

The gate itself is an external collaborator; this module defines its
interface plus two implementations:

- SupabaseAuthGate: resolves the token to a user via the Supabase auth API
  using the service-role key.
- StaticTokenAuthGate: fixed token -> principal table for development/tests.

It also hosts the classifier that maps third-party error bodies onto
``needs_reauth`` / ``other``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple

import httpx

from .config import AuthSettings, resolve_secret
from .errors import AuthError, BackendError, ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthResult:
    valid: bool
    principal: Optional[str] = None


class AuthGate(Protocol):
    def verify(self, credential: str) -> AuthResult:
        ...


def parse_bearer(header: Optional[str]) -> str:
    """Extract the token from ``Authorization: Bearer <token>``."""
    if not header or not header.startswith("Bearer "):
        raise AuthError("No authorization token provided.")
    token = header[len("Bearer "):].strip()
    if not token:
        raise AuthError("No authorization token provided.")
    return token


def require_principal(gate: AuthGate, authorization: Optional[str]) -> str:
    """Run the gate; raise AuthError unless the credential is valid."""
    token = parse_bearer(authorization)
    result = gate.verify(token)
    if not result.valid:
        raise AuthError("Unauthorized: Invalid token.")
    return result.principal or ""


# ---------------------------------------------------------------------------
# Credential error classification
# ---------------------------------------------------------------------------


class CredentialErrorKind(str, Enum):
    NEEDS_REAUTH = "needs_reauth"
    OTHER = "other"


# Lower-cased substring -> classification. Checked in order; first hit wins.
#
#   marker                 | source                                 | kind
#   -----------------------|----------------------------------------|-------------
#   "bad credentials"      | GitHub REST 401 body                   | needs_reauth
#   "invalid jwt"          | Supabase auth                          | needs_reauth
#   "jwt expired"          | Supabase auth                          | needs_reauth
#   "invalid token"        | generic OAuth / bearer                 | needs_reauth
#   "token has expired"    | generic OAuth                          | needs_reauth
#   "user not found"       | Supabase auth (deleted user)           | needs_reauth
#   "requires authentication" | GitHub REST                         | needs_reauth
#   "not found"            | GitHub answers 404 for missing scopes  | needs_reauth (only with 404)
#
# "not found" is ambiguous: it also matches genuinely missing resources. It
# is only honoured together with HTTP 404 and remains a known misclassification risk.
CREDENTIAL_ERROR_MARKERS: Tuple[Tuple[str, CredentialErrorKind], ...] = (
    ("bad credentials", CredentialErrorKind.NEEDS_REAUTH),
    ("invalid jwt", CredentialErrorKind.NEEDS_REAUTH),
    ("jwt expired", CredentialErrorKind.NEEDS_REAUTH),
    ("invalid token", CredentialErrorKind.NEEDS_REAUTH),
    ("token has expired", CredentialErrorKind.NEEDS_REAUTH),
    ("user not found", CredentialErrorKind.NEEDS_REAUTH),
    ("requires authentication", CredentialErrorKind.NEEDS_REAUTH),
)
_AMBIGUOUS_NOT_FOUND = "not found"


def _body_text(body: Any) -> str:
    if body is None:
        return ""
    if isinstance(body, Mapping):
        pieces = [str(body.get(k, "")) for k in ("message", "msg", "error", "error_description", "error_code")]
        return " ".join(p for p in pieces if p)
    return str(body)


def classify_credential_error(status_code: Optional[int], body: Any) -> CredentialErrorKind:
    """Classify a third-party error response into needs-reauth vs other."""
    if status_code in (401, 403):
        return CredentialErrorKind.NEEDS_REAUTH
    text = _body_text(body).lower()
    for marker, kind in CREDENTIAL_ERROR_MARKERS:
        if marker in text:
            return kind
    if status_code == 404 and _AMBIGUOUS_NOT_FOUND in text:
        return CredentialErrorKind.NEEDS_REAUTH
    return CredentialErrorKind.OTHER


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------


class StaticTokenAuthGate:
    """Token table gate; useful for local development and tests."""

    def __init__(self, tokens: Mapping[str, str]):
        self._tokens: Dict[str, str] = dict(tokens)

    def verify(self, credential: str) -> AuthResult:
        principal = self._tokens.get(credential)
        if principal is None:
            return AuthResult(valid=False)
        return AuthResult(valid=True, principal=principal)


class SupabaseAuthGate:
    """Looks the token up with ``GET {url}/auth/v1/user``."""

    def __init__(self, url: str, service_key: str, *, timeout: float = 10.0, client: Optional[httpx.Client] = None):
        self.url = url.rstrip("/")
        self.service_key = service_key
        self.timeout = timeout
        self._client = client

    def _get(self, token: str) -> httpx.Response:
        headers = {"apikey": self.service_key, "Authorization": f"Bearer {token}"}
        endpoint = f"{self.url}/auth/v1/user"
        if self._client is not None:
            return self._client.get(endpoint, headers=headers, timeout=self.timeout)
        with httpx.Client(timeout=self.timeout) as client:
            return client.get(endpoint, headers=headers)

    def verify(self, credential: str) -> AuthResult:
        try:
            response = self._get(credential)
        except httpx.HTTPError as exc:
            logger.error("Supabase auth lookup failed: %s", exc)
            raise BackendError(f"Authentication service unavailable: {exc}") from exc

        if response.status_code == 200:
            try:
                user = response.json() or {}
            except ValueError as exc:
                logger.error("Supabase auth lookup returned a non-JSON body")
                raise BackendError("Authentication service returned an unreadable response") from exc
            if not isinstance(user, dict):
                raise BackendError("Authentication service returned an unexpected response")
            principal = user.get("id") or user.get("email")
            if not principal:
                return AuthResult(valid=False)
            return AuthResult(valid=True, principal=str(principal))

        try:
            body: Any = response.json()
        except ValueError:
            body = response.text
        kind = classify_credential_error(response.status_code, body)
        if kind is CredentialErrorKind.NEEDS_REAUTH:
            logger.info("Supabase rejected credential (HTTP %s)", response.status_code)
            return AuthResult(valid=False)
        message = _body_text(body) or f"HTTP {response.status_code}"
        logger.error("Supabase auth lookup returned HTTP %s: %s", response.status_code, message)
        raise BackendError(f"Authentication service error: {message}")


def create_auth_gate(settings: AuthSettings, environ: Optional[Mapping[str, str]] = None) -> AuthGate:
    """Build the configured gate; ConfigError when its settings are incomplete."""
    if settings.mode == "static":
        raw = resolve_secret((settings.static_tokens_env,), environ) or ""
        tokens: Dict[str, str] = {}
        for entry in raw.split(","):
            entry = entry.strip()
            if not entry:
                continue
            token, _, principal = entry.partition(":")
            tokens[token] = principal or token
        if not tokens:
            raise ConfigError(f"Static auth enabled but {settings.static_tokens_env} is empty")
        return StaticTokenAuthGate(tokens)

    url = resolve_secret(settings.url_env, environ)
    service_key = resolve_secret(settings.service_key_env, environ)
    if not url or not service_key:
        logger.error("Supabase environment variables not set")
        raise ConfigError("Supabase URL or service-role key missing")
    return SupabaseAuthGate(url, service_key, timeout=settings.timeout)


__all__ = [
    "AuthGate",
    "AuthResult",
    "CREDENTIAL_ERROR_MARKERS",
    "CredentialErrorKind",
    "StaticTokenAuthGate",
    "SupabaseAuthGate",
    "classify_credential_error",
    "create_auth_gate",
    "parse_bearer",
    "require_principal",
]
