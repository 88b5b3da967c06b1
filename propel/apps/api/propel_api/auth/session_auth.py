"""Session authentication.

FLOW:
1. The identity provider issues an HS256 JWT to the signed-in user
2. The client calls the API with Authorization: Bearer <jwt>
3. The token is verified with AUTH_JWT_SECRET (PyJWT); ``sub`` is the
   external principal id
4. The principal is resolved to an internal User (created on first sight)
5. The user's active tenant is resolved, provisioning one on first use

SECURITY:
- Signature and expiry are always verified; ``aud``/``iss`` when configured
- Tenant membership is looked up server-side, never taken from the token
"""

import logging
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from propel_api.config.env import get_auth_jwt_audience, get_auth_jwt_issuer, get_auth_jwt_secret
from propel_api.context import user_id_var
from propel_api.db.models import User
from propel_api.db.session import get_db
from propel_api.errors import ConfigurationError, Unauthenticated
from propel_api.tenancy.context import TenantContext, get_active_tenant_context
from propel_api.tenancy.identity import resolve_user

logger = logging.getLogger(__name__)

session_security = HTTPBearer(auto_error=False, description="Identity provider session token (JWT)")

JWT_ALGORITHMS = ["HS256"]


class Principal:
    """Authenticated identity-provider principal."""

    def __init__(self, external_id: str, email: Optional[str] = None, first_name: Optional[str] = None):
        self.external_id = external_id
        self.email = email
        self.first_name = first_name


def decode_session_token(token: str) -> Principal:
    """Verify a bearer token and extract the principal.

    Raises:
        Unauthenticated: If the token is malformed, expired or badly signed
        ConfigurationError: If AUTH_JWT_SECRET is not configured
    """
    try:
        secret = get_auth_jwt_secret()
    except ValueError as exc:
        logger.error("AUTH_NOT_CONFIGURED")
        raise ConfigurationError("Authentication is not configured") from exc

    audience = get_auth_jwt_audience()
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=JWT_ALGORITHMS,
            audience=audience,
            issuer=get_auth_jwt_issuer(),
            options={"require": ["sub", "exp"], "verify_aud": audience is not None},
        )
    except jwt.ExpiredSignatureError as exc:
        raise Unauthenticated("Session token has expired. Please sign in again.") from exc
    except jwt.InvalidTokenError as exc:
        logger.warning("SESSION_TOKEN_INVALID", extra={"error_type": type(exc).__name__})
        raise Unauthenticated("Invalid session token. Please sign in again.") from exc

    return Principal(
        external_id=str(claims["sub"]),
        email=claims.get("email"),
        first_name=claims.get("given_name") or claims.get("first_name"),
    )


def get_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(session_security),
) -> Principal:
    """Authenticated principal of the request.

    Raises:
        Unauthenticated: 401 if the Authorization header is missing or invalid
    """
    if credentials is None:
        raise Unauthenticated("Missing Authorization header. Please sign in first.")
    return decode_session_token(credentials.credentials)


def get_current_user(
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> User:
    user = resolve_user(db, principal.external_id, principal.email, principal.first_name)
    user_id_var.set(user.id)
    return user


def get_tenant_context(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> TenantContext:
    """Active tenant of the caller; first-time callers get a workspace provisioned."""
    return get_active_tenant_context(db, user)
