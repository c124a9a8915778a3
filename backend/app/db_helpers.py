"""
Request user context and signed internal authentication.

The frontend server signs every API call with a shared secret (HMAC-SHA256 over
method, path with query, user id and unix timestamp). The middleware in app.main
verifies the signature and keeps the user id in a context variable for the
duration of the request; routes read it back through get_user_id().
"""
import contextvars
import hashlib
import hmac
import os
import time
from typing import Mapping, Optional, Tuple
from fastapi import HTTPException, status

INTERNAL_AUTH_USER_HEADER = "x-recurring-user-id"
INTERNAL_AUTH_TIMESTAMP_HEADER = "x-recurring-timestamp"
INTERNAL_AUTH_SIGNATURE_HEADER = "x-recurring-signature"
DEFAULT_INTERNAL_AUTH_MAX_AGE_SECONDS = 60

_request_user_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "request_user_id",
    default=None,
)


def set_request_user_id(user_id: str) -> contextvars.Token:
    return _request_user_id.set(user_id)


def clear_request_user_id(token: contextvars.Token) -> None:
    _request_user_id.reset(token)


def get_request_user_id() -> Optional[str]:
    return _request_user_id.get()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def internal_auth_secret() -> str:
    secret = os.getenv("INTERNAL_AUTH_SECRET", "").strip()
    if not secret:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal authentication secret is not configured.",
        )
    return secret


def max_signature_age_seconds() -> int:
    """INTERNAL_AUTH_MAX_AGE_SECONDS when it is a positive integer, else the default."""
    raw = os.getenv("INTERNAL_AUTH_MAX_AGE_SECONDS", "")
    if raw.strip().isdigit() and int(raw) > 0:
        return int(raw)
    return DEFAULT_INTERNAL_AUTH_MAX_AGE_SECONDS


def build_signature_payload(method: str, path_with_query: str, user_id: str, timestamp: str) -> str:
    return "\n".join([method.upper(), path_with_query, user_id, timestamp])


def sign_payload(secret: str, method: str, path_with_query: str, user_id: str, timestamp: str) -> str:
    payload = build_signature_payload(method, path_with_query, user_id, timestamp)
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def _read_auth_headers(headers: Mapping[str, str]) -> Tuple[str, str, str]:
    values = tuple(
        headers.get(name, "").strip()
        for name in (INTERNAL_AUTH_USER_HEADER, INTERNAL_AUTH_TIMESTAMP_HEADER, INTERNAL_AUTH_SIGNATURE_HEADER)
    )
    if not all(values):
        raise _unauthorized("Missing internal authentication headers.")
    return values


def authenticate_internal_request_from_headers(
    method: str,
    path_with_query: str,
    headers: Mapping[str, str],
) -> str:
    """
    Verify the signed headers of one request and return its user id.

    Raises:
        HTTPException: 401 for missing, stale or forged headers; 500 without a secret
    """
    user_id, timestamp, signature = _read_auth_headers(headers)

    try:
        signed_at = int(timestamp)
    except ValueError as exc:
        raise _unauthorized("Invalid internal authentication timestamp.") from exc

    if abs(int(time.time()) - signed_at) > max_signature_age_seconds():
        raise _unauthorized("Expired internal authentication signature.")

    expected = sign_payload(internal_auth_secret(), method, path_with_query, user_id, timestamp)
    if not hmac.compare_digest(expected, signature):
        raise _unauthorized("Invalid internal authentication signature.")

    return user_id


def get_user_id(user_id: Optional[str] = None) -> str:
    """
    Get the authenticated user id for the current request.

    Args:
        user_id: Optional explicit user ID; must match the signed identity

    Returns:
        User ID string

    Raises:
        HTTPException: 401 without a signed identity, 403 on a mismatch
    """
    request_user_id = get_request_user_id()
    if not request_user_id:
        raise _unauthorized("Authentication required.")

    if user_id and user_id != request_user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Provided user_id does not match authenticated user.",
        )

    return request_user_id
