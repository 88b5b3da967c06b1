"""
Unit tests for allowance enforcement.

Tests:
1. Strict mode: the 11th FREE generation is refused and nothing is counted
2. Strict mode: a failing action gives its reservation back
3. Best-effort mode: check, act, then increment
4. PRO: unlimited, still counted
5. Standing project cap for FREE
6. Async metering keeps ledger I/O off the event loop
"""

import asyncio

import pytest

from propel_api.db.models import Project, Subscription
from propel_api.errors import QuotaExceeded
from propel_api.pricing.allowance import ActionKind
from propel_api.pricing.enforcement import EnforcementEngine
from propel_api.pricing.metering import UsageLedger


def _use_generations(engine: EnforcementEngine, org_id: str, plan: str, n: int) -> None:
    for _ in range(n):
        with engine.metered_generation(org_id, plan):
            pass


class TestGetPlan:
    def test_defaults_to_free_without_subscription(self, db_session):
        engine = EnforcementEngine(db_session, mode="strict")
        assert engine.get_plan("org-without-subscription") == "FREE"

    def test_reads_subscription(self, db_session, tenant):
        db_session.query(Subscription).filter_by(org_id=tenant.organization.id).update({"plan": "PRO"})
        db_session.commit()
        assert EnforcementEngine(db_session, mode="strict").get_plan(tenant.organization.id) == "PRO"


class TestStrictMode:
    def test_eleventh_generation_is_refused(self, db_session, tenant):
        org_id = tenant.organization.id
        engine = EnforcementEngine(db_session, mode="strict")

        _use_generations(engine, org_id, "FREE", 10)

        with pytest.raises(QuotaExceeded) as exc_info:
            with engine.metered_generation(org_id, "FREE"):
                pytest.fail("action must not run once the allowance is used up")

        assert exc_info.value.status_code == 402
        assert exc_info.value.remaining == 0
        assert exc_info.value.limit == 10
        assert UsageLedger(db_session).get_usage(org_id) == 10

    def test_charge_reports_usage(self, db_session, tenant):
        engine = EnforcementEngine(db_session, mode="strict")

        with engine.metered_generation(tenant.organization.id, "FREE") as charge:
            pass

        assert charge.used == 1
        assert charge.limit == 10
        assert charge.remaining == 9

    def test_failed_action_is_not_counted(self, db_session, tenant):
        org_id = tenant.organization.id
        engine = EnforcementEngine(db_session, mode="strict")

        with pytest.raises(RuntimeError):
            with engine.metered_generation(org_id, "FREE"):
                raise RuntimeError("provider exploded")

        assert UsageLedger(db_session).get_usage(org_id) == 0

    def test_check_allowance_after_exhaustion(self, db_session, tenant):
        org_id = tenant.organization.id
        engine = EnforcementEngine(db_session, mode="strict")
        _use_generations(engine, org_id, "FREE", 10)

        allowance = engine.check_allowance(org_id, ActionKind.GENERATION)
        assert allowance.allowed is False
        assert allowance.remaining == 0


class TestBestEffortMode:
    def test_counts_after_success(self, db_session, tenant):
        org_id = tenant.organization.id
        engine = EnforcementEngine(db_session, mode="best_effort")

        with engine.metered_generation(org_id, "FREE") as charge:
            assert UsageLedger(db_session).get_usage(org_id) == 0

        assert charge.used == 1
        assert UsageLedger(db_session).get_usage(org_id) == 1

    def test_refuses_at_limit(self, db_session, tenant):
        org_id = tenant.organization.id
        engine = EnforcementEngine(db_session, mode="best_effort")
        _use_generations(engine, org_id, "FREE", 10)

        with pytest.raises(QuotaExceeded):
            with engine.metered_generation(org_id, "FREE"):
                pass

    def test_failed_action_is_not_counted(self, db_session, tenant):
        org_id = tenant.organization.id
        engine = EnforcementEngine(db_session, mode="best_effort")

        with pytest.raises(RuntimeError):
            with engine.metered_generation(org_id, "FREE"):
                raise RuntimeError("boom")

        assert UsageLedger(db_session).get_usage(org_id) == 0


class TestProPlan:
    @pytest.mark.parametrize("mode", ["strict", "best_effort"])
    def test_unlimited_but_counted(self, db_session, tenant, mode):
        org_id = tenant.organization.id
        engine = EnforcementEngine(db_session, mode=mode)

        _use_generations(engine, org_id, "PRO", 12)

        with engine.metered_generation(org_id, "PRO") as charge:
            pass
        assert charge.used == 13
        assert charge.remaining is None


def _on_event_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


class TestAsyncMetering:
    def _spy_ledger(self, monkeypatch) -> list:
        calls = []
        original = UsageLedger.increment_if_below

        def recording(self, *args, **kwargs):
            calls.append(_on_event_loop())
            return original(self, *args, **kwargs)

        monkeypatch.setattr(UsageLedger, "increment_if_below", recording)
        return calls

    def test_ledger_runs_off_the_event_loop(self, db_session, tenant, monkeypatch):
        calls = self._spy_ledger(monkeypatch)
        engine = EnforcementEngine(db_session, mode="strict")

        async def run():
            async with engine.ametered_generation(tenant.organization.id, "FREE") as charge:
                return charge

        charge = asyncio.run(run())

        assert charge.used == 1
        assert calls == [False]
        assert UsageLedger(db_session).get_usage(tenant.organization.id) == 1

    def test_failed_action_is_released(self, db_session, tenant):
        engine = EnforcementEngine(db_session, mode="strict")

        async def run():
            async with engine.ametered_generation(tenant.organization.id, "FREE"):
                raise RuntimeError("provider exploded")

        with pytest.raises(RuntimeError, match="provider exploded"):
            asyncio.run(run())

        assert UsageLedger(db_session).get_usage(tenant.organization.id) == 0

    def test_exhausted_allowance_is_refused(self, db_session, tenant):
        engine = EnforcementEngine(db_session, mode="strict")
        _use_generations(engine, tenant.organization.id, "FREE", 10)

        async def run():
            async with engine.ametered_generation(tenant.organization.id, "FREE"):
                pytest.fail("action must not run once the allowance is used up")

        with pytest.raises(QuotaExceeded):
            asyncio.run(run())

    def test_best_effort_counts_after_success(self, db_session, tenant):
        engine = EnforcementEngine(db_session, mode="best_effort")

        async def run():
            async with engine.ametered_generation(tenant.organization.id, "FREE") as charge:
                assert charge.used == 0
            return charge

        assert asyncio.run(run()).used == 1


class TestProjectSlots:
    def _add_projects(self, db_session, tenant, n):
        for i in range(n):
            db_session.add(
                Project(
                    org_id=tenant.organization.id,
                    owner_id=tenant.membership.user_id,
                    title=f"Project {i}",
                )
            )
        db_session.commit()

    @pytest.mark.parametrize("mode", ["strict", "best_effort"])
    def test_free_cap_is_three(self, db_session, tenant, mode):
        engine = EnforcementEngine(db_session, mode=mode)
        self._add_projects(db_session, tenant, 2)

        allowance = engine.reserve_project_slot(tenant.organization.id, "FREE")
        assert allowance.remaining == 1

        self._add_projects(db_session, tenant, 1)
        with pytest.raises(QuotaExceeded) as exc_info:
            engine.reserve_project_slot(tenant.organization.id, "FREE")

        assert exc_info.value.code == "PROJECT_LIMIT_REACHED"
        assert exc_info.value.limit == 3

    def test_pro_has_no_cap(self, db_session, tenant):
        self._add_projects(db_session, tenant, 5)
        allowance = EnforcementEngine(db_session, mode="strict").reserve_project_slot(
            tenant.organization.id, "PRO"
        )
        assert allowance.allowed is True


def test_invalid_mode_from_env(monkeypatch, db_session):
    monkeypatch.setenv("PROPEL_QUOTA_MODE", "yolo")
    with pytest.raises(ValueError):
        EnforcementEngine(db_session)
