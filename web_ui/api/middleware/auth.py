"""
Authentication Middleware

Firebase ID token verification for the API.

Security features:
- Firebase ID token verification (revocation checked)
- Admin custom claim support
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request, HTTPException, Depends, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from utils.firebase import get_firebase_app
from utils.logger import logger


@dataclass
class AuthenticatedUser:
    """Identity taken from a verified Firebase ID token"""
    uid: str
    email: Optional[str] = None
    email_verified: bool = False
    display_name: Optional[str] = None
    is_admin_claim: bool = False

    @property
    def first_name(self) -> Optional[str]:
        if not self.display_name:
            return None
        return self.display_name.split(" ", 1)[0]

    @property
    def last_name(self) -> Optional[str]:
        if not self.display_name or " " not in self.display_name:
            return None
        return self.display_name.split(" ", 1)[1]


# Security scheme for Swagger UI
security_scheme = HTTPBearer(auto_error=False)


async def verify_firebase_token(token: str) -> Optional[dict]:
    """
    Verify a Firebase ID token.

    Args:
        token: Firebase ID token string

    Returns:
        Decoded token claims if valid, None otherwise
    """
    get_firebase_app()

    from firebase_admin import auth

    try:
        return auth.verify_id_token(token, check_revoked=True)
    except auth.RevokedIdTokenError:
        return None
    except auth.ExpiredIdTokenError:
        return None
    except auth.InvalidIdTokenError:
        return None
    except (ValueError, auth.CertificateFetchError) as e:
        # Log the error but don't expose details to client
        logger.error(f"Token verification error: {e}")
        return None


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme)
) -> AuthenticatedUser:
    """
    FastAPI dependency to get the current authenticated user.

    Raises HTTPException 401 if not authenticated.

    Usage:
        @router.get("/protected")
        async def protected_route(user: AuthenticatedUser = Depends(get_current_user)):
            return {"message": f"Hello {user.email}"}
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    decoded = await verify_firebase_token(credentials.credentials)

    if decoded is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return AuthenticatedUser(
        uid=decoded["uid"],
        email=decoded.get("email"),
        email_verified=decoded.get("email_verified", False),
        display_name=decoded.get("name"),
        # Set via: auth.set_custom_user_claims(uid, {'admin': True})
        is_admin_claim=bool(decoded.get("admin", False)),
    )
