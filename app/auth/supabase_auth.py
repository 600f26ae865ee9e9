"""Supabase JWT validation dependency for FastAPI."""

import asyncio

from fastapi import Header
from app.db.supabase_client import anon_client
from app.errors import AuthError, ConfigurationError


def _get_user(token: str):
    return anon_client().auth.get_user(token)


async def verify_jwt(authorization: str = Header(None)) -> str:
    """Validate Supabase JWT from Authorization header.

    Returns the authenticated user's id. A missing Supabase configuration
    is raised as is, never reported as a bad token.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthError("Missing or invalid token")

    token = authorization.replace("Bearer ", "", 1).strip()
    if not token:
        raise AuthError("Missing or invalid token")
    try:
        loop = asyncio.get_running_loop()
        user_response = await loop.run_in_executor(None, _get_user, token)
    except ConfigurationError:
        raise
    except Exception as exc:
        raise AuthError("Invalid token") from exc

    user = getattr(user_response, "user", None)
    user_id = getattr(user, "id", None)
    if not user_id:
        raise AuthError("Invalid token payload")
    return str(user_id)
