"""
Entitlement (subscription) model.

Exactly one row per principal, keyed by the identity provider's subject id.

Lifecycle:
1. First contact (registration or GET /entitlement/me) inserts an INACTIVE row
   whose expires_at is now + grace window
2. Activation (billing webhook, or the development shortcut) upserts the row to
   ACTIVE with a plan and expiry; renewals repeat the same upsert
3. CANCELED is reserved for billing cancellation events

Rows are never deleted. Whether a principal is entitled is always computed from
status AND expires_at at the time of the check (see is_entitled_at); a stored
ACTIVE status on its own grants nothing.
"""

import enum
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime, Integer, String, Enum as SAEnum

from kasiviral.database.session import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; every stored timestamp is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class EntitlementStatus(str, enum.Enum):
    """Subscription lifecycle status."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    CANCELED = "canceled"


class EntitlementPlan(str, enum.Enum):
    """Billing cadence."""
    MONTHLY = "monthly"
    ANNUAL = "annual"


DEFAULT_PLAN = EntitlementPlan.MONTHLY


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Entitlement(Base):
    """A principal's paid-access record."""

    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, autoincrement=True)

    subject_id = Column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
        comment="Identity provider subject id (one row per principal)"
    )

    plan = Column(
        SAEnum(
            EntitlementPlan,
            name="entitlement_plan",
            native_enum=False,
            create_constraint=True,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=DEFAULT_PLAN,
    )

    status = Column(
        SAEnum(
            EntitlementStatus,
            name="entitlement_status",
            native_enum=False,
            create_constraint=True,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=EntitlementStatus.INACTIVE,
    )

    expires_at = Column(
        DateTime(timezone=True),
        nullable=False,
        comment="Instant after which ACTIVE is no longer honored"
    )

    # Correlation handles into the billing collaborator; stored, never interpreted
    external_billing_customer_ref = Column(String(255), nullable=True)
    external_billing_subscription_ref = Column(String(255), nullable=True)
    external_price_ref = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def is_entitled_at(self, now: datetime) -> bool:
        """status == active AND now < expires_at."""
        return self.status == EntitlementStatus.ACTIVE and ensure_utc(now) < ensure_utc(self.expires_at)

    @property
    def payment_method_on_file(self) -> bool:
        """Empty strings from the billing collaborator count as absent."""
        return bool(_present(self.external_billing_customer_ref) or _present(self.external_billing_subscription_ref))

    def __repr__(self) -> str:
        return (
            f"<Entitlement(subject_id={self.subject_id}, plan={self.plan}, "
            f"status={self.status}, expires_at={self.expires_at})>"
        )


def _present(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def normalize_ref(value: Optional[str]) -> Optional[str]:
    """Collapse blank billing references to None before they are stored."""
    return _present(value)
