"""Allowance policy: what a plan may still do this period.

Pure functions only. Callers supply the plan and the current usage figure
(monthly generations, or the standing project count); nothing here touches
the database.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from propel_api.db.models import PLAN_FREE, PLAN_PRO


class ActionKind(str, Enum):
    """Metered action families."""

    GENERATION = "GENERATION"  # AI generation and proposal generation, per month
    PROJECT_COUNT = "PROJECT_COUNT"  # standing number of projects, not monthly


# None means unlimited
PLAN_LIMITS: dict[str, dict[ActionKind, Optional[int]]] = {
    PLAN_FREE: {
        ActionKind.GENERATION: 10,
        ActionKind.PROJECT_COUNT: 3,
    },
    PLAN_PRO: {
        ActionKind.GENERATION: None,
        ActionKind.PROJECT_COUNT: None,
    },
}

FREE_GENERATION_LIMIT = PLAN_LIMITS[PLAN_FREE][ActionKind.GENERATION]
FREE_PROJECT_LIMIT = PLAN_LIMITS[PLAN_FREE][ActionKind.PROJECT_COUNT]


class Allowance(BaseModel):
    """Outcome of an allowance evaluation.

    ``limit`` and ``remaining`` are None when the plan is unlimited.
    """

    model_config = ConfigDict(frozen=True)

    allowed: bool
    used: int
    limit: Optional[int]
    remaining: Optional[int]

    @property
    def unlimited(self) -> bool:
        return self.limit is None


def get_limit(plan: str, action_kind: ActionKind) -> Optional[int]:
    """Limit for ``action_kind`` under ``plan``; unknown plans fall back to FREE."""
    limits = PLAN_LIMITS.get(plan, PLAN_LIMITS[PLAN_FREE])
    return limits[action_kind]


def evaluate_allowance(plan: str, used: int, action_kind: ActionKind) -> Allowance:
    """Decide whether one more ``action_kind`` is allowed.

    remaining = max(0, limit - used); allowed iff remaining > 0.
    Unlimited plans are always allowed.
    """
    used = max(0, used)
    limit = get_limit(plan, action_kind)
    if limit is None:
        return Allowance(allowed=True, used=used, limit=None, remaining=None)

    remaining = max(0, limit - used)
    return Allowance(allowed=remaining > 0, used=used, limit=limit, remaining=remaining)
