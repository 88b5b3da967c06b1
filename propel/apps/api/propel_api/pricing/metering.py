"""
Usage Ledger
Key: (org_id, month) where month is the UTC "YYYY-MM" key
Rollover: a new month key starts a fresh counter; old rows are kept
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from propel_api.db.models import Project, UsageRecord
from propel_api.db.upsert import upsert_insert
from propel_api.errors import PersistenceError

logger = logging.getLogger(__name__)


def month_key(now: Optional[datetime] = None) -> str:
    """UTC calendar month of ``now`` as ``YYYY-MM``. Naive datetimes are taken as UTC."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc).strftime("%Y-%m")


class UsageLedger:
    """
    Per-organization monthly generation counter.

    Every write is a single INSERT ... ON CONFLICT statement, so concurrent
    increments never lose updates and no read-modify-write happens in Python.
    """

    def __init__(self, db: Session, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        return self.clock()

    def current_month(self) -> str:
        return month_key(self.now())

    def get_usage(self, org_id: str, month: Optional[str] = None) -> int:
        """Generations recorded for ``org_id`` in ``month`` (current month by default)."""
        month = month or self.current_month()
        used = self.db.execute(
            select(UsageRecord.generations).where(
                UsageRecord.org_id == org_id,
                UsageRecord.month == month,
            )
        ).scalar_one_or_none()
        return int(used or 0)

    def increment_usage(self, org_id: str, amount: int = 1, month: Optional[str] = None) -> int:
        """
        Atomically add ``amount`` to the month's counter, creating it if absent.

        Returns:
            The new total for the month
        """
        if amount <= 0:
            raise ValueError(f"amount must be positive, got {amount}")

        now = self.now()
        month = month or month_key(now)
        stmt = upsert_insert(self.db, UsageRecord).values(
            id=str(uuid.uuid4()),
            org_id=org_id,
            month=month,
            generations=amount,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["org_id", "month"],
            set_={
                "generations": UsageRecord.generations + stmt.excluded.generations,
                "updated_at": stmt.excluded.updated_at,
            },
        ).returning(UsageRecord.generations)

        total = self._execute_write(stmt, org_id, month, "increment")
        logger.info(
            "USAGE_INCREMENTED",
            extra={"org_id": org_id, "month": month, "amount": amount, "total": total},
        )
        return int(total)

    def increment_if_below(
        self,
        org_id: str,
        limit: int,
        amount: int = 1,
        month: Optional[str] = None,
    ) -> Optional[int]:
        """
        Atomically add ``amount`` only if the total stays within ``limit``.

        Check and increment happen in one conditional upsert:
        ON CONFLICT DO UPDATE ... WHERE generations + amount <= limit.

        Returns:
            The new total, or None if the increment would exceed ``limit``
        """
        if amount <= 0:
            raise ValueError(f"amount must be positive, got {amount}")
        if amount > limit:
            return None

        now = self.now()
        month = month or month_key(now)
        stmt = upsert_insert(self.db, UsageRecord).values(
            id=str(uuid.uuid4()),
            org_id=org_id,
            month=month,
            generations=amount,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["org_id", "month"],
            set_={
                "generations": UsageRecord.generations + stmt.excluded.generations,
                "updated_at": stmt.excluded.updated_at,
            },
            where=(UsageRecord.generations + amount <= limit),
        ).returning(UsageRecord.generations)

        total = self._execute_write(stmt, org_id, month, "reserve")
        if total is None:
            logger.info(
                "USAGE_LIMIT_REACHED",
                extra={"org_id": org_id, "month": month, "limit": limit},
            )
            return None
        logger.info(
            "USAGE_RESERVED",
            extra={"org_id": org_id, "month": month, "amount": amount, "total": total},
        )
        return int(total)

    def release(self, org_id: str, amount: int = 1, month: Optional[str] = None) -> Optional[int]:
        """Give back ``amount`` reserved by ``increment_if_below`` (never below zero)."""
        month = month or self.current_month()
        stmt = (
            update(UsageRecord)
            .where(
                UsageRecord.org_id == org_id,
                UsageRecord.month == month,
                UsageRecord.generations >= amount,
            )
            .values(
                generations=UsageRecord.generations - amount,
                updated_at=self.now(),
            )
            .returning(UsageRecord.generations)
            .execution_options(synchronize_session=False)
        )
        total = self._execute_write(stmt, org_id, month, "release")
        logger.info(
            "USAGE_RELEASED",
            extra={"org_id": org_id, "month": month, "amount": amount, "total": total},
        )
        return total

    def count_projects(self, org_id: str) -> int:
        """Standing number of projects owned by the organization."""
        return int(
            self.db.execute(
                select(func.count()).select_from(Project).where(Project.org_id == org_id)
            ).scalar_one()
        )

    def _execute_write(self, stmt, org_id: str, month: str, op: str) -> Optional[int]:
        try:
            total = self.db.execute(stmt).scalar_one_or_none()
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(
                "USAGE_WRITE_FAILED",
                extra={"org_id": org_id, "month": month, "op": op, "error_type": type(exc).__name__},
            )
            raise PersistenceError("Usage ledger is temporarily unavailable") from exc
        return total
