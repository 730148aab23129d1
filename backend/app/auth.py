from __future__ import annotations

import sqlite3
from typing import Optional

from fastapi import Depends, Header

from backend.app.db import get_conn
from backend.app.errors import AuthError


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def resolve_user(conn: sqlite3.Connection, authorization: Optional[str]) -> Optional[str]:
    """Map an Authorization header to a user id (None if missing or unknown)."""
    token = _bearer_token(authorization)
    if token is None:
        return None
    row = conn.execute(
        "SELECT user_id FROM auth_tokens WHERE token = ?",
        (token,),
    ).fetchone()
    return str(row["user_id"]) if row else None


def optional_user(
    authorization: Optional[str] = Header(default=None),
    conn: sqlite3.Connection = Depends(get_conn),
) -> Optional[str]:
    return resolve_user(conn, authorization)


def require_user(
    authorization: Optional[str] = Header(default=None),
    conn: sqlite3.Connection = Depends(get_conn),
) -> str:
    if not authorization:
        raise AuthError("Unauthorized")
    user_id = resolve_user(conn, authorization)
    if user_id is None:
        raise AuthError("Invalid token")
    return user_id
