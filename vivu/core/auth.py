"""
Auth utilities for the Vivu API.

Validates HS256 JWTs (account id in the `sub` claim) and falls back to the
X-User-Id header when header auth is enabled (tests, local dev).
Admin routes accept either X-Admin-Key or a JWT for an admin account.
Token refresh accepts the bearer JWT only.
"""
from fastapi import Header, HTTPException, Request
from typing import Optional
from dataclasses import dataclass
from datetime import timedelta
import hashlib
import hmac
import logging
import jwt

from vivu.core.clock import get_clock, utc_now
from vivu.core.config import settings
from vivu.core.errors import AppError, PermissionError
from vivu.core.logging import bind_account

logger = logging.getLogger(__name__)


@dataclass
class AdminActor:
    """Represents an authenticated admin actor."""
    actor_id: str  # account id or "key:<hash>"
    auth_mechanism: str  # "jwt" | "x_admin_key"


def verify_jwt(token: str) -> Optional[str]:
    """
    Verify a bearer JWT and extract the account id.

    Returns None when no JWT_SECRET is configured.

    Raises:
        HTTPException 401: Invalid or expired token
    """
    if not settings.JWT_SECRET:
        logger.debug("No JWT_SECRET configured, skipping JWT validation")
        return None

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_signature": True, "verify_exp": True},
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise HTTPException(status_code=401, detail="Invalid token")

    account_id = payload.get("sub")
    if not account_id:
        raise HTTPException(status_code=401, detail="Token has no subject")
    return str(account_id)


def issue_jwt(account_id: str, expires_in_seconds: Optional[int] = None) -> str:
    """Sign a token for `account_id` (login, register and refresh routes)."""
    if not settings.JWT_SECRET:
        raise AppError("Token signing is not configured", code="auth_disabled", status_code=503)
    if expires_in_seconds is None:
        expires_in_seconds = settings.JWT_EXPIRES_SECONDS
    now = utc_now()
    claims = {"sub": account_id, "iat": now, "exp": now + timedelta(seconds=expires_in_seconds)}
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def _bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


async def get_current_account_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Dev/test account id"),
) -> str:
    """
    Extract current account id from request context.

    Priority:
    1. JWT from Authorization header
    2. X-User-Id header (when ALLOW_HEADER_AUTH)
    3. Raise 401 Unauthorized

    The account is created on first sight (trial subscription).
    """
    from vivu.features.accounts.service import get_or_create_account

    account_id = None
    token = _bearer_token(request)
    if token:
        account_id = verify_jwt(token)

    if not account_id and x_user_id and settings.ALLOW_HEADER_AUTH:
        account_id = x_user_id.strip() or None

    if not account_id:
        raise HTTPException(
            status_code=401,
            detail="Missing Authorization (Bearer JWT) or X-User-Id header",
        )

    get_or_create_account(account_id, get_clock(request))
    request.state.account_id = account_id
    bind_account(account_id)
    return account_id


def get_admin_actor(request: Request) -> Optional[AdminActor]:
    """Authenticate an admin from the request; returns None instead of raising."""
    expected_key = settings.ADMIN_KEY
    header_key = request.headers.get("X-Admin-Key", "").strip()
    if expected_key and header_key and hmac.compare_digest(header_key, expected_key):
        key_hash = hashlib.sha256(header_key.encode()).hexdigest()[:16]
        return AdminActor(actor_id=f"key:{key_hash}", auth_mechanism="x_admin_key")

    token = _bearer_token(request)
    if token:
        from vivu.features.accounts.store import get_account

        try:
            account_id = verify_jwt(token)
        except HTTPException:
            return None
        account = get_account(account_id) if account_id else None
        if account and account.is_admin:
            return AdminActor(actor_id=account.account_id, auth_mechanism="jwt")
    return None


async def require_admin(request: Request) -> AdminActor:
    actor = get_admin_actor(request)
    if actor is None:
        raise PermissionError("Admin access required")
    return actor


async def require_bearer_account_id(request: Request) -> str:
    """Account id from a valid bearer JWT only; no X-User-Id fallback."""
    token = _bearer_token(request)
    account_id = verify_jwt(token) if token else None
    if not account_id:
        raise HTTPException(status_code=401, detail="Bearer token required")
    request.state.account_id = account_id
    bind_account(account_id)
    return account_id
