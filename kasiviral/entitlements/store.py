"""
Entitlement store: persistence for the one-row-per-principal subscription table.

Every write is a single INSERT ... ON CONFLICT statement so that concurrent
requests for the same subject converge on one row without a read-then-write gap:
- upsert_active: ON CONFLICT (subject_id) DO UPDATE (last writer wins)
- create_inactive: ON CONFLICT (subject_id) DO NOTHING, then fetch

Supported dialects: PostgreSQL (production) and SQLite (development/tests).
"""

import logging
from datetime import datetime
from typing import Callable, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from kasiviral.entitlements.errors import StoreUnavailableError
from kasiviral.models.entitlement import (
    Entitlement,
    EntitlementPlan,
    EntitlementStatus,
    normalize_ref,
    utcnow,
)

logger = logging.getLogger(__name__)

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class EntitlementStore:
    """Atomic reads and writes against the subscriptions table."""

    def __init__(self, db_session: Session, clock: Callable[[], datetime] = utcnow):
        """
        Initialize the store.

        Args:
            db_session: SQLAlchemy session; every write commits it
            clock: Source of created_at/updated_at timestamps

        Raises:
            ValueError: If the session is bound to an unsupported dialect
        """
        self.db = db_session
        self._clock = clock
        dialect = db_session.get_bind().dialect.name
        if dialect not in _DIALECT_INSERTS:
            raise ValueError(f"Unsupported database dialect for entitlement store: {dialect}")
        self._insert = _DIALECT_INSERTS[dialect]

    def get(self, subject_id: str) -> Optional[Entitlement]:
        """Return the entitlement for subject_id, or None."""
        try:
            return self._fetch(subject_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                "Entitlement lookup failed",
                extra={"subject_id": subject_id, "error": str(e)},
            )
            raise StoreUnavailableError(subject_id, "get", cause=e) from e

    def upsert_active(
        self,
        subject_id: str,
        plan: EntitlementPlan,
        expires_at: datetime,
        *,
        billing_customer_ref: Optional[str] = None,
        billing_subscription_ref: Optional[str] = None,
        price_ref: Optional[str] = None,
    ) -> Entitlement:
        """
        Insert an ACTIVE row or overwrite plan/status/expiry of the existing one.

        Billing references are only replaced when the caller supplies them.
        """
        now = self._clock()
        table = Entitlement.__table__
        stmt = self._insert(Entitlement).values(
            subject_id=subject_id,
            plan=plan,
            status=EntitlementStatus.ACTIVE,
            expires_at=expires_at,
            external_billing_customer_ref=normalize_ref(billing_customer_ref),
            external_billing_subscription_ref=normalize_ref(billing_subscription_ref),
            external_price_ref=normalize_ref(price_ref),
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.subject_id],
            set_={
                "plan": stmt.excluded.plan,
                "status": stmt.excluded.status,
                "expires_at": stmt.excluded.expires_at,
                "updated_at": stmt.excluded.updated_at,
                "external_billing_customer_ref": func.coalesce(
                    stmt.excluded.external_billing_customer_ref,
                    table.c.external_billing_customer_ref,
                ),
                "external_billing_subscription_ref": func.coalesce(
                    stmt.excluded.external_billing_subscription_ref,
                    table.c.external_billing_subscription_ref,
                ),
                "external_price_ref": func.coalesce(
                    stmt.excluded.external_price_ref,
                    table.c.external_price_ref,
                ),
            },
        ).returning(Entitlement)

        try:
            entitlement = self.db.scalars(
                stmt, execution_options={"populate_existing": True}
            ).one()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                "Entitlement activation upsert failed",
                extra={"subject_id": subject_id, "error": str(e)},
            )
            raise StoreUnavailableError(subject_id, "upsert_active", cause=e) from e

        logger.info(
            "Entitlement activated",
            extra={
                "subject_id": subject_id,
                "plan": plan.value,
                "expires_at": expires_at.isoformat(),
            },
        )
        return entitlement

    def create_inactive(
        self,
        subject_id: str,
        plan: EntitlementPlan,
        expires_at: datetime,
    ) -> Tuple[Entitlement, bool]:
        """
        Insert an INACTIVE row unless one already exists.

        Returns:
            (entitlement, created). An existing row is returned unchanged with
            created=False.
        """
        now = self._clock()
        stmt = self._insert(Entitlement).values(
            subject_id=subject_id,
            plan=plan,
            status=EntitlementStatus.INACTIVE,
            expires_at=expires_at,
            created_at=now,
            updated_at=now,
        ).on_conflict_do_nothing(index_elements=[Entitlement.__table__.c.subject_id])

        try:
            result = self.db.execute(stmt)
            created = bool(result.rowcount)
            self.db.commit()
        except IntegrityError:
            # A racing writer won; its row is the answer.
            self.db.rollback()
            created = False
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                "Default entitlement insert failed",
                extra={"subject_id": subject_id, "error": str(e)},
            )
            raise StoreUnavailableError(subject_id, "create_inactive", cause=e) from e

        entitlement = self.get(subject_id)
        if entitlement is None:
            raise StoreUnavailableError(subject_id, "create_inactive")

        if created:
            logger.info(
                "Default entitlement provisioned",
                extra={"subject_id": subject_id, "expires_at": expires_at.isoformat()},
            )
        return entitlement, created

    def _fetch(self, subject_id: str) -> Optional[Entitlement]:
        stmt = (
            select(Entitlement)
            .where(Entitlement.subject_id == subject_id)
            .execution_options(populate_existing=True)
        )
        return self.db.scalars(stmt).first()
