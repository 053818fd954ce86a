"""Bearer tokens that authenticate dispatch task deliveries."""

import dataclasses
import datetime as dt

import jwt

from ..config import Settings


class DispatchAuthError(Exception):
    """The caller of the processing endpoint could not be authenticated."""


@dataclasses.dataclass(frozen=True)
class DispatchTokenSettings:
    """Signing material shared by the task runner and the processor."""

    secret: str
    issuer: str
    audience: str
    algorithm: str = "HS256"
    ttl_seconds: int = 300

    @classmethod
    def from_settings(cls, settings: Settings) -> "DispatchTokenSettings":
        return cls(
            secret=settings.dispatch_token_secret,
            issuer=settings.dispatch_token_issuer,
            audience=settings.dispatch_token_audience,
        )


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def issue_dispatch_token(
    settings: DispatchTokenSettings, subject: str, now: dt.datetime | None = None
) -> str:
    """Sign a short-lived token for delivering one task."""
    if not settings.secret:
        raise DispatchAuthError("Dispatch token secret is not configured")

    issued_at = now or _utcnow()
    claims = {
        "iss": settings.issuer,
        "aud": settings.audience,
        "sub": subject,
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + dt.timedelta(seconds=settings.ttl_seconds)).timestamp()),
    }
    return jwt.encode(claims, settings.secret, algorithm=settings.algorithm)


def verify_dispatch_token(settings: DispatchTokenSettings, token: str) -> dict:
    """Validate signature, expiry, issuer and audience; return the claims."""
    if not settings.secret:
        raise DispatchAuthError("Dispatch token secret is not configured")

    try:
        return jwt.decode(
            token,
            settings.secret,
            algorithms=[settings.algorithm],
            issuer=settings.issuer,
            audience=settings.audience,
            options={"require": ["exp", "iss", "aud"]},
        )
    except jwt.PyJWTError as e:
        raise DispatchAuthError(f"Invalid dispatch token: {e}") from e


def parse_bearer(header: str | None) -> str:
    """Extract the token from an ``Authorization: Bearer`` header."""
    if not header:
        raise DispatchAuthError("Missing Authorization header")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise DispatchAuthError("Authorization header must use the Bearer scheme")
    return token.strip()
