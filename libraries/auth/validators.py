"""
WEBCORE - Credential Validators

A validator checks that a request carries a well-formed credential and
extracts it. It does not decide who the caller is; that is the
authenticator's job against the auth store.

Validators:
- ApiKeyValidator: API key header, credential is the key's SHA-256 hash
- JwtValidator: Bearer token, credential is the verified ``sub`` claim
"""

from __future__ import annotations

import hashlib
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Request
from opentelemetry import trace

from config import AuthConfig
from core.errors import AuthError

tracer = trace.get_tracer(__name__)


@dataclass
class Credential:
    """Credential extracted from a request."""

    kind: str
    value: str
    claims: Dict[str, Any] = field(default_factory=dict)


def hash_api_key(key: str) -> str:
    """Hash an API key for storage and comparison."""
    return hashlib.sha256(key.encode()).hexdigest()


def generate_api_key() -> str:
    """Generate a secure API key."""
    return secrets.token_urlsafe(32)


class KeyValidator(ABC):
    """Checks credential presence and format."""

    name: str = ""

    def configure(self, config: AuthConfig) -> None:
        self.config = config

    @abstractmethod
    def validate(self, request: Request) -> Credential:
        """
        Extract the credential from a request.

        Raises:
            AuthError: Credential missing or malformed.
        """
        ...


class ApiKeyValidator(KeyValidator):
    """API key carried in a request header."""

    name = "apikey"

    def __init__(self, header: Optional[str] = None):
        self.header = header

    def configure(self, config: AuthConfig) -> None:
        super().configure(config)
        self.header = self.header or config.api_key_header

    def validate(self, request: Request) -> Credential:
        header = self.header or "X-API-Key"
        api_key = request.headers.get(header, "").strip()
        if not api_key:
            raise AuthError(f"Missing API key in {header} header", stage="validator")

        with tracer.start_as_current_span("auth.api_key.validated") as span:
            span.set_attribute("auth.method", "api_key")
            span.set_attribute("auth.key_prefix", api_key[:4] + "..." if len(api_key) > 8 else "***")

        return Credential(kind="api_key", value=hash_api_key(api_key))


class JwtValidator(KeyValidator):
    """Signed JWT carried as an ``Authorization: Bearer`` token."""

    name = "jwt"

    def __init__(self, secret: Optional[str] = None, algorithm: Optional[str] = None):
        self.secret = secret
        self.algorithm = algorithm
        self.audience: Optional[str] = None

    def configure(self, config: AuthConfig) -> None:
        super().configure(config)
        self.secret = self.secret or config.jwt_secret
        self.algorithm = self.algorithm or config.jwt_algorithm
        self.audience = config.jwt_audience or None

    def validate(self, request: Request) -> Credential:
        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            raise AuthError("Missing bearer token", stage="validator")
        if not self.secret:
            raise AuthError("JWT secret is not configured", stage="validator")

        token = auth_header[7:].strip()
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm or "HS256"],
                audience=self.audience,
                options={"verify_aud": self.audience is not None},
            )
        except jwt.PyJWTError as e:
            with tracer.start_as_current_span("auth.jwt.failed") as span:
                span.set_attribute("auth.method", "jwt")
                span.set_attribute("auth.error", str(e))
            raise AuthError(f"Invalid token: {e}", stage="validator", cause=e) from e

        subject = payload.get("sub")
        if not subject:
            raise AuthError("Token has no subject", stage="validator")

        return Credential(kind="subject", value=str(subject), claims=payload)

    def generate_token(
        self,
        user_id: str,
        expiry_hours: int = 24,
        **extra_claims: Any,
    ) -> str:
        """Issue a token this validator accepts."""
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(hours=expiry_hours)).timestamp()),
            **extra_claims,
        }
        if self.audience:
            payload.setdefault("aud", self.audience)
        return jwt.encode(payload, self.secret, algorithm=self.algorithm or "HS256")
