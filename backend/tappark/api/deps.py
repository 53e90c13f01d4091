"""
Request dependencies: caller identity from a Bearer JWT, and the realtime hub.

Tokens are issued by the auth service; we only verify them. Claims: sub (user id), role.
"""
import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from tappark.config import settings
from tappark.core.constants import ROLE_USER
from tappark.core.errors import STATUS_FORBIDDEN
from tappark.core.identity import Identity
from tappark.realtime.hub import RealtimeHub, get_hub

_bearer = HTTPBearer(auto_error=False)


class InvalidToken(Exception):
    pass


def decode_token(token: str | None) -> Identity:
    """Verify the JWT and return its Identity. Raises InvalidToken on anything wrong."""
    if not token:
        raise InvalidToken("missing token")
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.PyJWTError as e:
        raise InvalidToken(str(e)) from e
    try:
        user_id = int(claims.get("sub") or claims.get("user_id"))
    except (TypeError, ValueError) as e:
        raise InvalidToken("token has no user id") from e
    return Identity(user_id=user_id, role=str(claims.get("role") or ROLE_USER))


def get_identity(credentials: HTTPAuthorizationCredentials | None = Depends(_bearer)) -> Identity:
    try:
        return decode_token(credentials.credentials if credentials else None)
    except InvalidToken as e:
        raise HTTPException(
            status_code=401,
            detail={"success": False, "errorCode": "INVALID_TOKEN", "message": str(e), "retryable": False},
        ) from e


def require_privileged(identity: Identity = Depends(get_identity)) -> Identity:
    if not identity.is_privileged:
        raise HTTPException(
            status_code=STATUS_FORBIDDEN,
            detail={
                "success": False,
                "errorCode": "UNAUTHORIZED",
                "message": "Attendant or admin role required",
                "retryable": False,
            },
        )
    return identity


def hub_dependency() -> RealtimeHub:
    return get_hub()
