"""Role policy: pure predicates over a membership role."""

from propel_api.db.models import ROLE_ADMIN, ROLE_OWNER, ROLES
from propel_api.errors import Forbidden

_MANAGERS = frozenset({ROLE_OWNER, ROLE_ADMIN})


def is_owner_or_admin(role: str) -> bool:
    return role in _MANAGERS


def can_manage_billing(role: str) -> bool:
    return role in _MANAGERS


def can_invite_members(role: str) -> bool:
    return role in _MANAGERS


def can_delete_project(role: str) -> bool:
    """Also gates proposal deletion."""
    return role in _MANAGERS


def can_contribute(role: str) -> bool:
    """Any member may create projects, generate and edit proposals."""
    return role in ROLES


def require(allowed: bool, detail: str) -> None:
    """Raise Forbidden unless ``allowed``."""
    if not allowed:
        raise Forbidden(detail)
