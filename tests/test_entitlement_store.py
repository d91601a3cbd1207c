"""
Tests for EntitlementStore against a real SQLite database.

Concurrency tests use a file-backed database and one session per worker so
that writers genuinely race on the subject_id unique constraint.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from unittest.mock import Mock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from kasiviral.entitlements.errors import StoreUnavailableError
from kasiviral.entitlements.service import EntitlementService
from kasiviral.entitlements.store import EntitlementStore
from kasiviral.models.entitlement import (
    Entitlement,
    EntitlementPlan,
    EntitlementStatus,
    ensure_utc,
)


def _row_count(session_factory, subject_id):
    session = session_factory()
    try:
        return session.scalar(
            select(func.count()).select_from(Entitlement).where(Entitlement.subject_id == subject_id)
        )
    finally:
        session.close()


@pytest.fixture
def store(db_session, clock):
    return EntitlementStore(db_session, clock=clock)


class TestGet:

    def test_missing_subject_returns_none(self, store):
        assert store.get("ghost") is None

    def test_database_error_becomes_store_unavailable(self, clock):
        session = Mock(spec=Session)
        session.get_bind.return_value.dialect.name = "sqlite"
        session.scalars.side_effect = OperationalError("SELECT", {}, Exception("disk I/O error"))
        store = EntitlementStore(session, clock=clock)

        with pytest.raises(StoreUnavailableError) as exc_info:
            store.get("u1")

        assert exc_info.value.operation == "get"
        assert exc_info.value.error_code == "STORE_UNAVAILABLE"
        session.rollback.assert_called_once()

    def test_unsupported_dialect_rejected(self, clock):
        session = Mock(spec=Session)
        session.get_bind.return_value.dialect.name = "mysql"
        with pytest.raises(ValueError):
            EntitlementStore(session, clock=clock)


class TestCreateInactive:

    def test_first_call_creates_second_returns_existing(self, store, clock, session_factory):
        expires = clock() + timedelta(days=30)

        first, created_first = store.create_inactive("u1", EntitlementPlan.MONTHLY, expires)
        second, created_second = store.create_inactive(
            "u1", EntitlementPlan.ANNUAL, expires + timedelta(days=5)
        )

        assert created_first is True
        assert created_second is False
        assert first.id == second.id
        assert second.status == EntitlementStatus.INACTIVE
        assert second.plan == EntitlementPlan.MONTHLY
        assert ensure_utc(second.expires_at) == expires
        assert _row_count(session_factory, "u1") == 1

    def test_does_not_downgrade_active_row(self, store, clock):
        store.upsert_active("u1", EntitlementPlan.ANNUAL, clock() + timedelta(days=365))

        entitlement, created = store.create_inactive(
            "u1", EntitlementPlan.MONTHLY, clock() + timedelta(days=30)
        )

        assert created is False
        assert entitlement.status == EntitlementStatus.ACTIVE
        assert entitlement.plan == EntitlementPlan.ANNUAL

    def test_concurrent_provisioning_yields_one_row(self, session_factory, clock):
        def provision(_):
            session = session_factory()
            try:
                service = EntitlementService(EntitlementStore(session, clock=clock), clock=clock)
                entitlement, created = service.ensure_default_entitlement("racer")
                return entitlement.id, entitlement.status, ensure_utc(entitlement.expires_at), created
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(provision, range(16)))

        assert _row_count(session_factory, "racer") == 1
        assert len({r[0] for r in results}) == 1
        assert {r[1] for r in results} == {EntitlementStatus.INACTIVE}
        assert {r[2] for r in results} == {clock() + timedelta(days=30)}
        assert sum(1 for r in results if r[3]) == 1


class TestUpsertActive:

    def test_inserts_when_missing(self, store, clock):
        expires = clock() + timedelta(days=30)
        entitlement = store.upsert_active("u1", EntitlementPlan.MONTHLY, expires)

        assert entitlement.status == EntitlementStatus.ACTIVE
        assert entitlement.plan == EntitlementPlan.MONTHLY
        assert ensure_utc(entitlement.expires_at) == expires

    def test_renewal_overwrites_plan_and_expiry(self, store, clock, session_factory):
        store.create_inactive("u1", EntitlementPlan.MONTHLY, clock() + timedelta(days=30))
        renewed_until = clock() + timedelta(days=365)

        entitlement = store.upsert_active("u1", EntitlementPlan.ANNUAL, renewed_until)

        assert entitlement.status == EntitlementStatus.ACTIVE
        assert entitlement.plan == EntitlementPlan.ANNUAL
        assert ensure_utc(entitlement.expires_at) == renewed_until
        assert _row_count(session_factory, "u1") == 1

    def test_billing_refs_kept_when_not_supplied(self, store, clock):
        store.upsert_active(
            "u1",
            EntitlementPlan.MONTHLY,
            clock() + timedelta(days=30),
            billing_customer_ref="cus_123",
            billing_subscription_ref="sub_456",
            price_ref="price_789",
        )
        entitlement = store.upsert_active("u1", EntitlementPlan.MONTHLY, clock() + timedelta(days=60))

        assert entitlement.external_billing_customer_ref == "cus_123"
        assert entitlement.external_billing_subscription_ref == "sub_456"
        assert entitlement.external_price_ref == "price_789"
        assert entitlement.payment_method_on_file is True

    def test_blank_refs_stored_as_absent(self, store, clock):
        entitlement = store.upsert_active(
            "u1",
            EntitlementPlan.MONTHLY,
            clock() + timedelta(days=30),
            billing_customer_ref="",
            billing_subscription_ref="   ",
        )

        assert entitlement.external_billing_customer_ref is None
        assert entitlement.external_billing_subscription_ref is None
        assert entitlement.payment_method_on_file is False

    def test_concurrent_activations_converge(self, session_factory, clock):
        inputs = [
            (EntitlementPlan.MONTHLY if i % 2 else EntitlementPlan.ANNUAL, clock() + timedelta(days=10 + i))
            for i in range(12)
        ]

        def activate(args):
            plan, expires = args
            session = session_factory()
            try:
                service = EntitlementService(EntitlementStore(session, clock=clock), clock=clock)
                service.activate("racer", plan, expires)
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=6) as pool:
            list(pool.map(activate, inputs))

        assert _row_count(session_factory, "racer") == 1

        session = session_factory()
        try:
            row = EntitlementStore(session, clock=clock).get("racer")
        finally:
            session.close()

        assert row.status == EntitlementStatus.ACTIVE
        assert (row.plan, ensure_utc(row.expires_at)) in inputs
