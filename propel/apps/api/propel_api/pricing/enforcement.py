"""
Allowance Enforcement
Orders every metered action as: check allowance, act, record usage
"""

import logging
import sys
from contextlib import asynccontextmanager, contextmanager
from typing import AsyncIterator, Iterator, Optional

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import select
from sqlalchemy.orm import Session

from propel_api.config.env import QUOTA_MODE_STRICT, get_quota_mode
from propel_api.db.models import PLAN_FREE, Organization, Subscription
from propel_api.errors import PersistenceError, QuotaExceeded
from propel_api.pricing.allowance import ActionKind, Allowance, evaluate_allowance, get_limit
from propel_api.pricing.metering import UsageLedger

logger = logging.getLogger(__name__)

GENERATION_QUOTA_MESSAGE = "Free quota reached. Upgrade to PRO for unlimited generations."
PROJECT_LIMIT_MESSAGE = "Free plan project limit reached. Upgrade to PRO for unlimited projects."


class UsageCharge:
    """Usage figures for one metered generation, final once the block exits."""

    def __init__(self, org_id: str, plan: str, month: str, used: int, limit: Optional[int]):
        self.org_id = org_id
        self.plan = plan
        self.month = month
        self.used = used
        self.limit = limit

    @property
    def remaining(self) -> Optional[int]:
        if self.limit is None:
            return None
        return max(0, self.limit - self.used)


class EnforcementEngine:
    """
    Runtime enforcement of plan allowances:
    1. Monthly generations (AI generation + proposal generation)
    2. Standing project count

    Modes (PROPEL_QUOTA_MODE):
    - strict: one conditional upsert reserves the generation before the
      action; the reservation is released if the action raises
    - best_effort: check, act, then increment; concurrent requests may
      overshoot the limit by the number in flight
    """

    def __init__(self, db: Session, mode: Optional[str] = None, ledger: Optional[UsageLedger] = None):
        self.db = db
        self.mode = mode or get_quota_mode()
        self.ledger = ledger or UsageLedger(db)

    def get_plan(self, org_id: str) -> str:
        """Plan of the organization; a missing subscription row reads as FREE."""
        plan = self.db.execute(
            select(Subscription.plan).where(Subscription.org_id == org_id)
        ).scalar_one_or_none()
        return plan or PLAN_FREE

    def check_allowance(
        self,
        org_id: str,
        action_kind: ActionKind,
        plan: Optional[str] = None,
    ) -> Allowance:
        """Evaluate the allowance of ``org_id`` for one more ``action_kind``."""
        plan = plan or self.get_plan(org_id)
        if action_kind is ActionKind.PROJECT_COUNT:
            used = self.ledger.count_projects(org_id)
        else:
            used = self.ledger.get_usage(org_id)
        return evaluate_allowance(plan, used, action_kind)

    @contextmanager
    def metered_generation(self, org_id: str, plan: str) -> Iterator[UsageCharge]:
        """
        Wrap one generation so it is counted exactly when it succeeds.

        Raises:
            QuotaExceeded: If the allowance is exhausted (nothing is performed)

        A body that raises consumes nothing. A body that completes, including
        one that fell back to a stub response, consumes one generation.
        """
        month = self.ledger.current_month()
        limit = get_limit(plan, ActionKind.GENERATION)

        if limit is None:
            charge = UsageCharge(org_id, plan, month, self.ledger.get_usage(org_id, month), None)
            yield charge
            charge.used = self.ledger.increment_usage(org_id, month=month)
            return

        if self.mode == QUOTA_MODE_STRICT:
            total = self.ledger.increment_if_below(org_id, limit, month=month)
            if total is None:
                raise QuotaExceeded(GENERATION_QUOTA_MESSAGE, remaining=0, limit=limit)
            charge = UsageCharge(org_id, plan, month, total, limit)
            try:
                yield charge
            except BaseException:
                self._release(org_id, month)
                raise
            return

        allowance = evaluate_allowance(plan, self.ledger.get_usage(org_id, month), ActionKind.GENERATION)
        if not allowance.allowed:
            raise QuotaExceeded(GENERATION_QUOTA_MESSAGE, remaining=0, limit=limit)
        charge = UsageCharge(org_id, plan, month, allowance.used, limit)
        yield charge
        charge.used = self.ledger.increment_usage(org_id, month=month)

    @asynccontextmanager
    async def ametered_generation(self, org_id: str, plan: str) -> AsyncIterator[UsageCharge]:
        """metered_generation for async callers.

        Ledger reads and writes run in the threadpool so the event loop is
        never blocked on the database.
        """
        metered = self.metered_generation(org_id, plan)
        charge = await run_in_threadpool(metered.__enter__)
        try:
            yield charge
        except BaseException:
            if not await run_in_threadpool(metered.__exit__, *sys.exc_info()):
                raise
        else:
            await run_in_threadpool(metered.__exit__, None, None, None)

    def reserve_project_slot(self, org_id: str, plan: str) -> Allowance:
        """
        Check the standing project cap before a project insert.

        In strict mode the organization row is locked (SELECT ... FOR UPDATE)
        so concurrent creations for one org serialize until the caller
        commits. The caller must insert the project and commit in the same
        transaction.

        Raises:
            QuotaExceeded: If the cap is reached (code PROJECT_LIMIT_REACHED)
        """
        limit = get_limit(plan, ActionKind.PROJECT_COUNT)
        if limit is None:
            return evaluate_allowance(plan, 0, ActionKind.PROJECT_COUNT)

        if self.mode == QUOTA_MODE_STRICT:
            self.db.execute(
                select(Organization.id).where(Organization.id == org_id).with_for_update()
            )
        allowance = evaluate_allowance(
            plan, self.ledger.count_projects(org_id), ActionKind.PROJECT_COUNT
        )
        if not allowance.allowed:
            self.db.rollback()
            logger.info(
                "PROJECT_LIMIT_REACHED",
                extra={"org_id": org_id, "limit": limit, "used": allowance.used},
            )
            raise QuotaExceeded(
                PROJECT_LIMIT_MESSAGE,
                code="PROJECT_LIMIT_REACHED",
                remaining=0,
                limit=limit,
            )
        return allowance

    def _release(self, org_id: str, month: str) -> None:
        try:
            self.ledger.release(org_id, month=month)
        except PersistenceError:
            # Original failure propagates; the leaked unit is visible in this log
            logger.error("USAGE_RELEASE_FAILED", extra={"org_id": org_id, "month": month})
