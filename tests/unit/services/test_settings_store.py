"""
Settings Store Tests.

WHAT: Defaults, partial updates, validation and the Redis cache layer.

WHY: A partial update is merged into the stored section before validation,
so a request can only ever produce a fully valid section. The cache is
optional and must never make a request fail.
"""

import json
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import select

from saas_billing.core.exceptions import ValidationError
from saas_billing.dao.system_setting import SystemSettingDAO
from saas_billing.models.audit_log import AuditAction, AuditLog
from saas_billing.schemas.settings import SETTINGS_SECTIONS, SettingsUpdate
from saas_billing.services.audit import AuditContext
from saas_billing.services.settings_store import SettingsStore, deep_merge


@pytest.fixture
def context(test_superadmin) -> AuditContext:
    return AuditContext.for_user(test_superadmin, ip_address="192.0.2.10")


def fake_redis(initial=None) -> AsyncMock:
    cache = AsyncMock()
    cache.get = AsyncMock(return_value=initial)
    cache.set = AsyncMock(return_value=True)
    return cache


class TestDeepMerge:
    def test_nested_dicts_are_merged(self):
        base = {"a": 1, "nested": {"x": 1, "y": 2}}

        merged = deep_merge(base, {"nested": {"y": 3}, "b": 2})

        assert merged == {"a": 1, "b": 2, "nested": {"x": 1, "y": 3}}
        assert base["nested"]["y"] == 2

    def test_non_dict_values_replace(self):
        assert deep_merge({"a": {"x": 1}}, {"a": 5}) == {"a": 5}


@pytest.mark.asyncio
class TestReads:
    async def test_defaults_for_unsaved_sections(self, db_session):
        values = await SettingsStore(db_session).get_all()

        assert set(values) == set(SETTINGS_SECTIONS)
        assert values["security"]["passwordMinLength"] == 8
        assert values["billing"]["defaultCurrency"] == "USD"
        assert values["notifications"]["emailFrom"] == "support@ria-sas.local"

    async def test_unknown_section(self, db_session):
        with pytest.raises(ValidationError):
            await SettingsStore(db_session).get_section("payroll")

    async def test_cached_section_skips_database(self, db_session):
        cached = {"maintenanceMode": True, "backupFrequencyHours": 12}
        cache = fake_redis(json.dumps(cached))

        values = await SettingsStore(db_session, cache=cache).get_section("system")

        assert values == cached
        cache.get.assert_awaited_once_with("settings:system")
        cache.set.assert_not_awaited()

    async def test_cache_miss_populates_cache(self, db_session):
        cache = fake_redis(None)

        await SettingsStore(db_session, cache=cache, cache_ttl=60).get_section("audit")

        key, payload = cache.set.await_args.args
        assert key == "settings:audit"
        assert json.loads(payload)["retentionDays"] == 90
        assert cache.set.await_args.kwargs == {"ex": 60}

    async def test_cache_errors_are_ignored(self, db_session):
        cache = fake_redis()
        cache.get.side_effect = RedisConnectionError("down")
        cache.set.side_effect = RedisConnectionError("down")

        values = await SettingsStore(db_session, cache=cache).get_section("access")

        assert values["maxAdminSessions"] == 3


@pytest.mark.asyncio
class TestUpdate:
    """Tests for SettingsStore.update."""

    async def test_partial_update_keeps_other_keys(self, db_session, context):
        store = SettingsStore(db_session)

        result = await store.update(
            SettingsUpdate(security={"passwordMinLength": 12}), context
        )

        assert result["security"]["passwordMinLength"] == 12
        assert result["security"]["tokenTtlMinutes"] == 10080
        row = await SystemSettingDAO(db_session).get_section("security")
        assert row.values["passwordMinLength"] == 12
        assert row.updated_by_id == context.actor_id

    async def test_successive_updates_merge(self, db_session, context):
        store = SettingsStore(db_session)
        await store.update(SettingsUpdate(billing={"gracePeriodDays": 14}), context)

        result = await store.update(SettingsUpdate(billing={"defaultCurrency": "EUR"}), context)

        assert result["billing"]["gracePeriodDays"] == 14
        assert result["billing"]["defaultCurrency"] == "EUR"

    @pytest.mark.parametrize(
        "update",
        [
            {"security": {"passwordMinLength": 4}},
            {"security": {"tokenTtlMinutes": 20000}},
            {"audit": {"retentionDays": 7}},
            {"notifications": {"webhookUrl": "not a url"}},
        ],
    )
    async def test_out_of_range_values_are_rejected(self, db_session, context, update):
        with pytest.raises(ValidationError) as exc_info:
            await SettingsStore(db_session).update(SettingsUpdate(**update), context)

        assert exc_info.value.context["errors"]

    async def test_invalid_section_blocks_the_whole_update(self, db_session, context):
        store = SettingsStore(db_session)

        with pytest.raises(ValidationError):
            await store.update(
                SettingsUpdate(
                    system={"maintenanceMode": True},
                    audit={"retentionDays": 1000},
                ),
                context,
            )

        assert await SystemSettingDAO(db_session).get_section("system") is None

    async def test_update_is_audited(self, db_session, context):
        await SettingsStore(db_session).update(
            SettingsUpdate(system={"maintenanceMode": True}), context
        )

        result = await db_session.execute(
            select(AuditLog).where(AuditLog.action == AuditAction.UPDATE_SETTINGS.value)
        )
        log = result.scalar_one()
        assert log.target == "settings"
        assert log.extra_data["sections"] == ["system"]
        assert log.extra_data["changes"] == {"system": {"maintenanceMode": True}}

    async def test_empty_update_writes_nothing(self, db_session, context):
        result = await SettingsStore(db_session).update(SettingsUpdate(), context)

        assert result["system"]["maintenanceMode"] is False
        logs = await db_session.execute(select(AuditLog))
        assert logs.scalars().all() == []

    async def test_update_refreshes_cache(self, db_session, context):
        cache = fake_redis(None)

        await SettingsStore(db_session, cache=cache).update(
            SettingsUpdate(integrations={"crmProvider": "salesforce"}), context
        )

        writes = {
            call.args[0]: json.loads(call.args[1]) for call in cache.set.await_args_list
        }
        assert writes["settings:integrations"]["crmProvider"] == "salesforce"
