"""
Signed internal auth headers for route tests.
"""
import os
import time

from app.db_helpers import (
    INTERNAL_AUTH_SIGNATURE_HEADER,
    INTERNAL_AUTH_TIMESTAMP_HEADER,
    INTERNAL_AUTH_USER_HEADER,
    sign_payload,
)


def build_internal_auth_headers(method: str, path_with_query: str, user_id: str) -> dict[str, str]:
    secret = os.getenv("INTERNAL_AUTH_SECRET", "").strip()
    if not secret:
        raise RuntimeError("INTERNAL_AUTH_SECRET is required for route tests.")

    timestamp = str(int(time.time()))
    return {
        INTERNAL_AUTH_USER_HEADER: user_id,
        INTERNAL_AUTH_TIMESTAMP_HEADER: timestamp,
        INTERNAL_AUTH_SIGNATURE_HEADER: sign_payload(secret, method, path_with_query, user_id, timestamp),
    }
