"""
Plan Catalog Tests.

WHAT: Lookups and the admin edit operation.

WHY: Admin edits must never touch price, currency, interval or code, and
must leave an audit trail only when something actually changed.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from saas_billing.core.exceptions import PlanNotFoundError, ValidationError
from saas_billing.models.audit_log import AuditAction, AuditLog
from saas_billing.services.audit import AuditContext
from saas_billing.services.plan_catalog import PlanCatalog


@pytest.fixture
def context(test_superadmin) -> AuditContext:
    return AuditContext.for_user(test_superadmin, ip_address="198.51.100.4")


async def plan_audit_logs(db_session):
    result = await db_session.execute(
        select(AuditLog).where(AuditLog.action == AuditAction.UPDATE_SUBSCRIPTION_PLAN.value)
    )
    return list(result.scalars().all())


@pytest.mark.asyncio
class TestLookups:
    async def test_get_by_code(self, db_session, plans):
        plan = await PlanCatalog(db_session).get_by_code("pro")

        assert plan.price == Decimal("12.00")
        assert plan.limits["invoicesPerMonth"] == -1

    async def test_unknown_code_raises(self, db_session, plans):
        with pytest.raises(PlanNotFoundError) as exc_info:
            await PlanCatalog(db_session).get_by_code("enterprise")

        assert exc_info.value.status_code == 404

    async def test_unknown_id_raises(self, db_session, plans):
        with pytest.raises(PlanNotFoundError):
            await PlanCatalog(db_session).get_by_id(9999)

    async def test_list_all_is_ordered_by_code(self, db_session, plans):
        codes = [plan.code for plan in await PlanCatalog(db_session).list_all()]

        assert codes == ["free", "pro"]


@pytest.mark.asyncio
class TestUpdatePlan:
    """Tests for admin plan edits."""

    async def test_updates_editable_fields(self, db_session, plans, context):
        catalog = PlanCatalog(db_session)
        pro = plans["pro"]

        result = await catalog.update_plan(
            pro.id,
            {"name": "Pro 2026", "limits": {"invoicesPerMonth": 500, "clients": -1}},
            context,
        )

        assert sorted(result.changes_applied) == ["limits", "name"]
        assert result.plan.name == "Pro 2026"
        assert result.plan.limits["invoicesPerMonth"] == 500

    async def test_protected_fields_are_ignored(self, db_session, plans, context):
        pro = plans["pro"]

        result = await PlanCatalog(db_session).update_plan(
            pro.id,
            {"code": "gold", "price": 99, "currency": "USD", "interval": "year"},
            context,
        )

        assert result.changes_applied == []
        assert result.plan.code == "pro"
        assert result.plan.price == Decimal("12.00")
        assert result.plan.currency == "EUR"
        assert result.plan.interval == "month"

    async def test_audit_entry_records_old_and_new_values(self, db_session, plans, context):
        pro = plans["pro"]

        await PlanCatalog(db_session).update_plan(pro.id, {"name": "Pro Plus"}, context)

        logs = await plan_audit_logs(db_session)
        assert len(logs) == 1
        assert logs[0].target == "plan:pro"
        assert logs[0].actor_email == "root@example.com"
        assert logs[0].ip_address == "198.51.100.4"
        assert logs[0].extra_data == {"old": {"name": "Plan Pro"}, "new": {"name": "Pro Plus"}}

    async def test_unchanged_values_write_no_audit_entry(self, db_session, plans, context):
        pro = plans["pro"]

        result = await PlanCatalog(db_session).update_plan(
            pro.id, {"name": pro.name, "features": list(pro.features)}, context
        )

        assert result.changes_applied == []
        assert await plan_audit_logs(db_session) == []

    @pytest.mark.parametrize(
        "payload",
        [
            {"name": "   "},
            {"features": "Unlimited everything"},
            {"features": ["ok", 3]},
            {"limits": ["clients", 10]},
        ],
    )
    async def test_malformed_values_are_rejected(self, db_session, plans, context, payload):
        with pytest.raises(ValidationError):
            await PlanCatalog(db_session).update_plan(plans["pro"].id, payload, context)

    async def test_unknown_plan_raises(self, db_session, plans, context):
        with pytest.raises(PlanNotFoundError):
            await PlanCatalog(db_session).update_plan(424242, {"name": "x"}, context)
