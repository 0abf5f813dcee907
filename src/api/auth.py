"""
Dashboard Authentication
- NextAuth JWT validation (HS256, shared NEXTAUTH_SECRET)
- Resolves the session user to an Actor (id + role) for the services
"""

from typing import Any, Dict, Optional

from fastapi import Depends, Header, Request
from jose import jwt
from jose.exceptions import JOSEError
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from config.config import NEXTAUTH_SECRET
from config.sentry import set_user_context
from src.core.actor import Actor, UNKNOWN_ACTOR
from src.core.enums import AuditAction, AuditTargetType, ResponseStatus
from src.core.exceptions import UnauthorizedError
from src.database.crud import get_user_by_email, get_user_by_id
from src.database.engine import get_session
from src.services.audit_service import create_audit_log

NEXTAUTH_ALGORITHM = "HS256"


def decode_nextauth_jwt(token: str, secret: Optional[str] = None) -> Dict[str, Any]:
    """
    Decode and validate NextAuth JWT token.

    Args:
        token: JWT token from NextAuth
        secret: Signing secret (defaults to NEXTAUTH_SECRET)

    Returns:
        dict: Decoded JWT payload with user data

    Raises:
        UnauthorizedError: If token is invalid, expired or has no identity
    """
    try:
        payload = jwt.decode(
            token,
            secret or NEXTAUTH_SECRET,
            algorithms=[NEXTAUTH_ALGORITHM]
        )
    except JOSEError as e:
        logger.warning(f"Invalid JWT token: {e}")
        raise UnauthorizedError()

    if not payload.get('email') and not payload.get('sub'):
        logger.warning("JWT payload has neither email nor sub")
        raise UnauthorizedError()

    return payload


async def _reject(session: AsyncSession, request: Request, reason: str) -> UnauthorizedError:
    """Best-effort UNAUTHORIZED_ACCESS audit entry, then the 401 to raise"""
    await create_audit_log(
        session,
        UNKNOWN_ACTOR,
        AuditAction.UNAUTHORIZED_ACCESS,
        AuditTargetType.SYSTEM,
        details={
            "reason": reason,
            "method": request.method,
            "path": request.url.path,
        },
        response_status=ResponseStatus.FAILURE,
    )
    return UnauthorizedError()


async def get_current_actor(
    request: Request,
    authorization: Optional[str] = Header(None),
    session: AsyncSession = Depends(get_session),
) -> Actor:
    """
    FastAPI Dependency: authenticated dashboard user as an Actor

    Headers:
        Authorization: Bearer <nextauth jwt>

    The role always comes from the database, never from the token.

    Raises:
        UnauthorizedError: missing/invalid token or unknown user

    Usage:
        @router.get("/subscriptions")
        async def list_subscriptions(actor: Actor = Depends(get_current_actor)):
            ...
    """
    if not authorization or not authorization.startswith('Bearer '):
        raise await _reject(session, request, "missing_token")

    token = authorization[7:]  # Remove "Bearer " prefix

    try:
        payload = decode_nextauth_jwt(token)
    except UnauthorizedError:
        raise await _reject(session, request, "invalid_token")

    user = None
    if payload.get('sub'):
        user = await get_user_by_id(session, payload['sub'])
    if user is None and payload.get('email'):
        user = await get_user_by_email(session, payload['email'])

    if user is None:
        raise await _reject(session, request, "unknown_user")

    set_user_context(user.id, email=user.email, role=user.role)

    return Actor(id=user.id, role=user.role, email=user.email, name=user.name)
