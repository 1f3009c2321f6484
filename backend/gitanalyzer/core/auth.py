"""HS256 session-token authentication for FastAPI."""

import hmac
from dataclasses import dataclass

import jwt as pyjwt
from fastapi import Depends, Header, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from gitanalyzer.core.config import get_settings

_bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthUser:
    """Authenticated user extracted from a session JWT."""

    user_id: str
    claims: dict


def decode_jwt(token: str) -> AuthUser:
    """Verify and decode a session JWT signed with the shared secret.

    Raises ``HTTPException(401)`` on any validation failure.
    """
    settings = get_settings()
    if not settings.jwt_secret:
        raise HTTPException(status_code=500, detail="Authentication is misconfigured")

    try:
        payload = pyjwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience or None,
            options={
                "verify_exp": True,
                "verify_aud": bool(settings.jwt_audience),
                "require": ["sub", "exp"],
            },
        )
    except pyjwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except pyjwt.MissingRequiredClaimError as exc:
        raise HTTPException(status_code=401, detail=f"Missing required claim: {exc}")
    except pyjwt.InvalidAudienceError:
        raise HTTPException(status_code=401, detail="Unauthorized audience (aud mismatch)")
    except pyjwt.InvalidTokenError as exc:
        raise HTTPException(status_code=401, detail=f"Invalid token: {exc}")

    sub = payload.get("sub")
    if not sub:
        raise HTTPException(status_code=401, detail="Token missing sub claim")

    return AuthUser(user_id=sub, claims=payload)


def is_admin_user(user: AuthUser) -> bool:
    """Check the admin role in the token's app_metadata.

    JWT-only; services additionally consult the user_roles table.
    """
    app_metadata = user.claims.get("app_metadata") or {}
    return app_metadata.get("role") == "admin"


async def require_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> AuthUser:
    """FastAPI dependency that extracts and validates the bearer JWT.

    Usage::

        @router.get("/protected")
        async def protected(user: AuthUser = Depends(require_auth)):
            ...
    """
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    user = decode_jwt(credentials.credentials)

    # Set user_id on request state for downstream use (error handlers, logging)
    request.state.user_id = user.user_id

    return user


async def require_admin(user: AuthUser = Depends(require_auth)) -> AuthUser:
    """FastAPI dependency that requires admin privileges.

    Checks the JWT app_metadata first, then falls back to the user_roles table.
    """
    if is_admin_user(user):
        return user

    from gitanalyzer.db.base import get_session_factory
    from gitanalyzer.services.project_access import has_admin_role

    async with get_session_factory()() as session:
        if await has_admin_role(session, user.user_id):
            return user

    raise HTTPException(status_code=403, detail="Admin access required")


async def require_internal(x_internal_token: str | None = Header(default=None)) -> None:
    """Guard for the queue trigger endpoint.

    When ``internal_trigger_token`` is configured the caller must send it in
    ``X-Internal-Token``; an empty setting leaves the endpoint open.
    """
    expected = get_settings().internal_trigger_token
    if not expected:
        return
    if x_internal_token is None or not hmac.compare_digest(x_internal_token, expected):
        raise HTTPException(status_code=401, detail="Invalid internal token")
