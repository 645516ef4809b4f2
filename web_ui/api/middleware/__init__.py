"""
API Middleware

Authentication for the FastAPI application.
"""

from .auth import (
    get_current_user,
    verify_firebase_token,
    AuthenticatedUser,
)

__all__ = [
    "get_current_user",
    "verify_firebase_token",
    "AuthenticatedUser",
]
