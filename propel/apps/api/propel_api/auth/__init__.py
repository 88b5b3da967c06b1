"""Bearer-token authentication."""

from propel_api.auth.session_auth import (
    Principal,
    decode_session_token,
    get_current_user,
    get_principal,
    get_tenant_context,
)

__all__ = [
    "Principal",
    "decode_session_token",
    "get_current_user",
    "get_principal",
    "get_tenant_context",
]
