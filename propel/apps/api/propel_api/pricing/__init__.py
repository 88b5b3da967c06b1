"""
Propel Pricing Module
Plan allowances, monthly usage ledger and enforcement
"""

from .allowance import (
    FREE_GENERATION_LIMIT,
    FREE_PROJECT_LIMIT,
    PLAN_LIMITS,
    ActionKind,
    Allowance,
    evaluate_allowance,
    get_limit,
)
from .enforcement import EnforcementEngine, UsageCharge
from .metering import UsageLedger, month_key

__all__ = [
    # Allowance policy
    "ActionKind",
    "Allowance",
    "PLAN_LIMITS",
    "FREE_GENERATION_LIMIT",
    "FREE_PROJECT_LIMIT",
    "evaluate_allowance",
    "get_limit",
    # Ledger
    "UsageLedger",
    "month_key",
    # Enforcement
    "EnforcementEngine",
    "UsageCharge",
]
