import logging
from dataclasses import dataclass
from typing import Any

import httpx
from supabase import Client, create_client

from docchat.config import settings
from docchat.core.errors import AuthenticationError, AuthServiceError

logger = logging.getLogger(__name__)

INVALID_TOKEN_DETAIL = "Invalid or expired access token"


@dataclass(frozen=True)
class AuthenticatedUser:
    """Caller identity; ``user_id`` is the Supabase user id every owner_id column stores."""

    user_id: str
    email: str | None = None


def _auth_client() -> Client:
    if not settings.SUPABASE_URL or not settings.supabase_service_key:
        raise AuthServiceError("Supabase auth is not configured")
    return create_client(settings.SUPABASE_URL, settings.supabase_service_key)


def _user_record_via_rest(access_token: str) -> dict[str, Any] | None:
    response = httpx.get(
        f"{settings.SUPABASE_URL.rstrip('/')}/auth/v1/user",
        headers={"Authorization": f"Bearer {access_token}", "apikey": settings.supabase_service_key},
        timeout=10.0,
    )
    if response.status_code != 200:
        return None
    return response.json()


def _user_record(access_token: str) -> Any:
    try:
        return _auth_client().auth.get_user(access_token).user
    except TypeError as exc:
        # Some supabase/httpx combinations reject the 'proxy' kwarg; the REST endpoint is equivalent.
        if "proxy" not in str(exc):
            raise
        return _user_record_via_rest(access_token)


def _to_user(record: Any) -> AuthenticatedUser:
    if isinstance(record, dict):
        user_id, email = record.get("id"), record.get("email")
    else:
        user_id, email = getattr(record, "id", None), getattr(record, "email", None)
    if not user_id:
        raise AuthenticationError(INVALID_TOKEN_DETAIL)
    return AuthenticatedUser(user_id=str(user_id), email=email or None)


def authenticate_bearer(access_token: str) -> AuthenticatedUser:
    if not access_token:
        raise AuthenticationError(INVALID_TOKEN_DETAIL)
    try:
        record = _user_record(access_token)
    except AuthServiceError:
        raise
    except httpx.TransportError as exc:
        logger.error("supabase auth unreachable", extra={"reason": str(exc)})
        raise AuthServiceError("Authentication service unavailable") from exc
    except Exception as exc:  # noqa: BLE001
        logger.info("access token rejected", extra={"reason": str(exc)})
        raise AuthenticationError(INVALID_TOKEN_DETAIL) from exc
    if record is None:
        raise AuthenticationError(INVALID_TOKEN_DETAIL)
    return _to_user(record)
