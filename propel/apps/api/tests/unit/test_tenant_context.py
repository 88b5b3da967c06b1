"""Unit tests for active tenant resolution."""

from datetime import datetime, timezone

from sqlalchemy import delete

from propel_api.context import org_id_var, plan_var
from propel_api.db.models import Membership, Organization, Subscription, User
from propel_api.pricing.metering import UsageLedger
from propel_api.tenancy.context import get_active_tenant_context, provision_and_resolve, try_resolve


class TestTryResolve:
    def test_none_without_membership(self, db_session, make_user):
        user = make_user("ext_new", "new@example.com", "Nina")
        assert try_resolve(db_session, user) is None
        # Pure read: nothing was provisioned
        assert db_session.query(Organization).count() == 0

    def test_resolves_owner_context(self, db_session, tenant):
        user_id = tenant.membership.user_id
        user = db_session.get(User, user_id)
        ctx = try_resolve(db_session, user)

        assert ctx.org_id == tenant.organization.id
        assert ctx.org_name == "Olivia Workspace"
        assert ctx.role == "OWNER"
        assert ctx.plan == "FREE"
        assert ctx.is_owner_or_admin is True
        assert ctx.usage.used == 0
        assert ctx.usage.limit == 10
        assert ctx.usage.remaining == 10

    def test_missing_subscription_reads_as_free(self, db_session, tenant):
        db_session.execute(delete(Subscription).where(Subscription.org_id == tenant.organization.id))
        db_session.commit()

        ctx = try_resolve(db_session, db_session.get(User, tenant.membership.user_id))
        assert ctx.plan == "FREE"

    def test_usage_snapshot_reflects_ledger(self, db_session, tenant):
        ledger = UsageLedger(db_session)
        for _ in range(4):
            ledger.increment_usage(tenant.organization.id)

        ctx = try_resolve(db_session, db_session.get(User, tenant.membership.user_id), ledger)
        assert ctx.usage.used == 4
        assert ctx.usage.remaining == 6
        assert ctx.usage.month == ledger.current_month()


class TestGetActiveTenantContext:
    def test_first_call_provisions(self, db_session, make_user):
        user = make_user("ext_new", "new@example.com", "Nina")

        ctx = get_active_tenant_context(db_session, user)

        assert ctx.org_name == "Nina Workspace"
        assert ctx.role == "OWNER"
        assert ctx.plan == "FREE"
        assert org_id_var.get() == ctx.org_id
        assert plan_var.get() == "FREE"

    def test_stable_across_calls(self, db_session, make_user):
        user = make_user("ext_new", "new@example.com", "Nina")

        first = get_active_tenant_context(db_session, user)
        second = get_active_tenant_context(db_session, user)

        assert first.org_id == second.org_id
        assert db_session.query(Organization).count() == 1

    def test_later_invite_does_not_switch_tenant(self, db_session, make_user, tenant):
        bob = make_user("ext_bob", "bob@example.com", "Bob")
        own = get_active_tenant_context(db_session, bob)

        db_session.add(
            Membership(
                user_id=bob.id,
                org_id=tenant.organization.id,
                role="ADMIN",
                created_at=datetime(2099, 1, 1, tzinfo=timezone.utc),
            )
        )
        db_session.commit()

        ctx = get_active_tenant_context(db_session, bob)
        assert ctx.org_id == own.org_id
        assert ctx.role == "OWNER"

    def test_provision_and_resolve_is_idempotent(self, db_session, make_user):
        user = make_user("ext_new", "new@example.com", "Nina")

        first = provision_and_resolve(db_session, user)
        second = provision_and_resolve(db_session, user)

        assert first.org_id == second.org_id
