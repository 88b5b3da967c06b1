"""Identity Resolver: external principal id -> internal User."""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from propel_api.db.models import User
from propel_api.db.upsert import upsert_insert
from propel_api.errors import PersistenceError, Unauthenticated

logger = logging.getLogger(__name__)

UNKNOWN_EMAIL = "unknown"


def resolve_user(
    db: Session,
    external_id: str,
    email_hint: Optional[str] = None,
    first_name: Optional[str] = None,
) -> User:
    """
    Return the internal user for ``external_id``, creating it on first sight.

    One INSERT ... ON CONFLICT (external_id) statement, so concurrent first
    requests from the same principal converge on a single row. When an email
    hint is supplied the stored email is refreshed; ``first_name`` is
    refreshed whenever supplied. Without a hint an existing row is left as is.

    Raises:
        Unauthenticated: If ``external_id`` is empty
        PersistenceError: On database failure
    """
    if not external_id:
        raise Unauthenticated("Missing authenticated principal")

    email = (email_hint or "").strip().lower() or None
    stmt = upsert_insert(db, User).values(
        id=str(uuid.uuid4()),
        external_id=external_id,
        email=email or UNKNOWN_EMAIL,
        first_name=first_name,
        created_at=datetime.now(timezone.utc),
    )
    if email:
        stmt = stmt.on_conflict_do_update(
            index_elements=["external_id"],
            set_={
                "email": stmt.excluded.email,
                "first_name": func.coalesce(stmt.excluded.first_name, User.first_name),
            },
        )
    elif first_name:
        stmt = stmt.on_conflict_do_update(
            index_elements=["external_id"],
            set_={"first_name": stmt.excluded.first_name},
        )
    else:
        stmt = stmt.on_conflict_do_nothing(index_elements=["external_id"])

    try:
        db.execute(stmt)
        user = db.execute(
            select(User).where(User.external_id == external_id).execution_options(populate_existing=True)
        ).scalar_one()
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("USER_RESOLVE_FAILED", extra={"error_type": type(exc).__name__})
        raise PersistenceError("Could not resolve user") from exc

    return user


def find_user_by_email(db: Session, email: str) -> Optional[User]:
    """Earliest user registered with ``email`` (case-insensitive), if any."""
    return db.execute(
        select(User)
        .where(User.email == email.strip().lower())
        .order_by(User.created_at.asc(), User.id.asc())
        .limit(1)
    ).scalar_one_or_none()
