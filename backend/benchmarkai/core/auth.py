"""Supabase JWT authentication for FastAPI."""

import hmac
from dataclasses import dataclass, field

import jwt as pyjwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from benchmarkai.core.config import get_settings

_bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthUser:
    """Authenticated user extracted from a Supabase access token."""

    user_id: str
    email: str | None = None
    claims: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Caller:
    """Identity behind a request that may come from a user or an internal service."""

    user: AuthUser | None
    is_service: bool = False

    @property
    def user_id(self) -> str | None:
        return self.user.user_id if self.user else None


def decode_supabase_jwt(token: str) -> AuthUser:
    """Verify and decode a Supabase access token.

    Raises ``HTTPException(401)`` on any validation failure.
    """
    settings = get_settings()
    if not settings.supabase_jwt_secret:
        raise HTTPException(status_code=500, detail="Authentication is misconfigured")

    try:
        payload = pyjwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=["HS256"],
            audience=settings.supabase_jwt_audience,
            options={
                "verify_exp": True,
                "require": ["sub", "exp"],
            },
        )
    except pyjwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except pyjwt.InvalidAudienceError:
        raise HTTPException(status_code=401, detail="Unauthorized audience (aud mismatch)")
    except pyjwt.MissingRequiredClaimError as exc:
        raise HTTPException(status_code=401, detail=f"Missing required claim: {exc}")
    except pyjwt.InvalidTokenError as exc:
        raise HTTPException(status_code=401, detail=f"Invalid token: {exc}")

    sub = payload.get("sub")
    if not sub:
        raise HTTPException(status_code=401, detail="Token missing sub claim")

    return AuthUser(user_id=sub, email=payload.get("email"), claims=payload)


def _is_service_token(token: str) -> bool:
    service_key = get_settings().service_role_key
    return bool(service_key) and hmac.compare_digest(token, service_key)


async def require_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> AuthUser:
    """FastAPI dependency that extracts and validates the user's access token.

    Usage::

        @router.get("/protected")
        async def protected(user: AuthUser = Depends(require_auth)):
            ...
    """
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    user = decode_supabase_jwt(credentials.credentials)
    request.state.user_id = user.user_id
    return user


async def require_caller(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> Caller:
    """Accept either a user access token or the internal service-role key.

    Service callers are not scoped to a single user's reports.
    """
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    if _is_service_token(credentials.credentials):
        request.state.user_id = "service"
        return Caller(user=None, is_service=True)

    user = decode_supabase_jwt(credentials.credentials)
    request.state.user_id = user.user_id
    return Caller(user=user)
