"""
System settings store.

WHAT: Typed, admin-editable system settings grouped in sections
(security, access, billing, notifications, integrations, system, audit).

WHY: Settings are stored one row per section. Concurrency policy is
last-write-wins per section: two admins editing different sections never
overwrite each other. Sections that were never saved read as defaults.

HOW:
- Reads go through an optional Redis cache (read-through)
- Writes go to the database first, then refresh the cache (write-through)
- A partial update is deep-merged into the stored section, then the merged
  section is validated as a whole
- Cache failures are logged and ignored; the database is authoritative
"""

import json
import logging
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from saas_billing.core.config import settings
from saas_billing.core.exceptions import ValidationError
from saas_billing.dao.system_setting import SystemSettingDAO
from saas_billing.models.audit_log import AuditAction
from saas_billing.schemas.settings import SETTINGS_SECTIONS, SettingsUpdate
from saas_billing.services.audit import AuditService, AuditContext

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "settings"


def deep_merge(base: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``changes`` into a copy of ``base``."""
    merged = dict(base)
    for key, value in changes.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class SettingsStore:
    """Read/write access to system settings sections."""

    def __init__(
        self,
        session: AsyncSession,
        cache: Optional[aioredis.Redis] = None,
        cache_ttl: Optional[int] = None,
    ):
        self.session = session
        self.dao = SystemSettingDAO(session)
        self.audit = AuditService(session)
        self.cache = cache
        self.cache_ttl = cache_ttl or settings.SETTINGS_CACHE_TTL_SECONDS

    async def get_section(self, section: str) -> Dict[str, Any]:
        """
        Current values of one section, defaults filled in.

        Raises:
            ValidationError: If the section name is unknown
        """
        model = self._section_model(section)

        cached = await self._cache_get(section)
        if cached is not None:
            return cached

        row = await self.dao.get_section(section)
        stored = row.values if row else {}
        values = model.model_validate(stored or {}).to_wire()
        await self._cache_set(section, values)
        return values

    async def get_all(self) -> Dict[str, Dict[str, Any]]:
        """Every section, keyed by section name."""
        return {name: await self.get_section(name) for name in SETTINGS_SECTIONS}

    async def update(
        self, update: SettingsUpdate, context: AuditContext
    ) -> Dict[str, Dict[str, Any]]:
        """
        Merge a partial update into the stored sections.

        Every touched section is validated after merging; nothing is written
        unless all of them are valid.

        Raises:
            ValidationError: If a merged section violates its constraints
        """
        changes = update.sections()
        merged: Dict[str, Dict[str, Any]] = {}
        for section, partial in changes.items():
            model = self._section_model(section)
            row = await self.dao.get_section(section)
            current = model.model_validate(row.values if row else {}).to_wire()
            try:
                merged[section] = model.model_validate(deep_merge(current, partial)).to_wire()
            except PydanticValidationError as e:
                raise ValidationError(
                    f"Invalid {section} settings",
                    section=section,
                    errors=[
                        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
                        for err in e.errors()
                    ],
                )

        for section, values in merged.items():
            await self.dao.upsert_section(section, values, updated_by_id=context.actor_id)

        if merged:
            await self.audit.log(
                AuditAction.UPDATE_SETTINGS,
                context,
                target="settings",
                metadata={"sections": sorted(merged), "changes": changes},
            )
            logger.info(
                f"Settings updated: {', '.join(sorted(merged))}",
                extra={"sections": sorted(merged), "actor_id": context.actor_id},
            )

        for section, values in merged.items():
            await self._cache_set(section, values)

        return await self.get_all()

    # ========================================================================
    # Internals
    # ========================================================================

    @staticmethod
    def _section_model(section: str):
        model = SETTINGS_SECTIONS.get(section)
        if model is None:
            raise ValidationError(f"Unknown settings section '{section}'", section=section)
        return model

    async def _cache_get(self, section: str) -> Optional[Dict[str, Any]]:
        if self.cache is None:
            return None
        try:
            raw = await self.cache.get(f"{CACHE_KEY_PREFIX}:{section}")
        except RedisError as e:
            logger.warning(f"Settings cache read failed: {e}", extra={"section": section})
            return None
        if raw is None:
            return None
        return json.loads(raw)

    async def _cache_set(self, section: str, values: Dict[str, Any]) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.set(
                f"{CACHE_KEY_PREFIX}:{section}", json.dumps(values), ex=self.cache_ttl
            )
        except RedisError as e:
            logger.warning(f"Settings cache write failed: {e}", extra={"section": section})
