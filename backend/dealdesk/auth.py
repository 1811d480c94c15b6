from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt

from dealdesk.config import settings
from dealdesk.errors import ConfigurationError, Unauthenticated


_bearer_scheme = HTTPBearer(auto_error=False)
_ALGORITHMS = ["HS256"]


@dataclass(frozen=True)
class Caller:
    user_id: str
    email: str | None = None
    claims: dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.email or "system"


ANONYMOUS_CALLER = Caller(user_id="anonymous")


def decode_access_token(token: str) -> dict[str, Any]:
    secret = str(settings.auth_jwt_secret or "").strip()
    if not secret:
        raise ConfigurationError("Authentication is enabled but AUTH_JWT_SECRET is not configured.")

    audience = str(settings.auth_jwt_audience or "").strip() or None
    issuer = str(settings.auth_jwt_issuer or "").strip() or None
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=_ALGORITHMS,
            audience=audience,
            issuer=issuer,
            options={"verify_aud": audience is not None},
        )
    except ExpiredSignatureError as exc:
        raise Unauthenticated("Bearer token has expired.") from exc
    except JWTError as exc:
        raise Unauthenticated(f"Invalid bearer token: {exc}") from exc

    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject.strip():
        raise Unauthenticated("Bearer token does not identify a user (missing 'sub').")
    return claims


def _extract_token(credentials: HTTPAuthorizationCredentials | None) -> str:
    if credentials is None:
        raise Unauthenticated("Missing bearer token.")
    if credentials.scheme.lower() != "bearer":
        raise Unauthenticated("Unsupported authorization scheme.")
    token = credentials.credentials.strip()
    if not token:
        raise Unauthenticated("Missing bearer token.")
    return token


def _caller_from_claims(claims: dict[str, Any]) -> Caller:
    email = claims.get("email")
    return Caller(
        user_id=str(claims["sub"]),
        email=email if isinstance(email, str) and email.strip() else None,
        claims=claims,
    )


def require_authenticated_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> Caller | None:
    if not settings.auth_enabled:
        return None

    token = _extract_token(credentials)
    return _caller_from_claims(decode_access_token(token))


def require_caller(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> Caller:
    """Unlike the CRUD guard, the functions always demand a bearer header."""

    token = _extract_token(credentials)
    if not settings.auth_enabled:
        return ANONYMOUS_CALLER
    return _caller_from_claims(decode_access_token(token))
