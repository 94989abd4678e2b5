"""
System settings schemas.

WHAT: Typed sections of the admin-configurable system settings.

WHY: Each section is validated as a whole after a partial update has been
merged into it, so range rules apply to the stored result, not only to the
keys present in a request. Field names are camelCase on the wire.
"""

from typing import Any, Dict, Optional, Type

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field

from saas_billing.schemas.base import CamelModel


class SettingsSection(CamelModel):
    """Base for settings sections; unknown keys are dropped."""

    model_config = ConfigDict(extra="ignore")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class SecuritySettings(SettingsSection):
    mfa_required: bool = False
    password_min_length: int = Field(default=8, ge=8, le=32)
    token_ttl_minutes: int = Field(default=10080, ge=60, le=10080)


class AccessSettings(SettingsSection):
    allow_admin_impersonation: bool = False
    max_admin_sessions: int = Field(default=3, ge=1, le=10)


class BillingSettings(SettingsSection):
    proration_enabled: bool = True
    grace_period_days: int = Field(default=7, ge=0, le=30)
    default_currency: str = Field(default="USD", min_length=3, max_length=3)


class NotificationSettings(SettingsSection):
    sla_warning_hours: int = Field(default=24, ge=1, le=72)
    # Plain pattern: the default sender lives on a ".local" domain.
    email_from: str = Field(
        default="support@ria-sas.local",
        pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$",
    )
    webhook_url: AnyHttpUrl = Field(
        default="https://api.ria-sas.local/webhooks/admin", validate_default=True
    )


class IntegrationSettings(SettingsSection):
    crm_provider: str = "hubspot"
    analytics_provider: str = "mixpanel"


class SystemSettings(SettingsSection):
    maintenance_mode: bool = False
    backup_frequency_hours: int = Field(default=6, ge=1, le=168)


class AuditSettings(SettingsSection):
    retention_days: int = Field(default=90, ge=30, le=365)
    export_enabled: bool = True


SETTINGS_SECTIONS: Dict[str, Type[SettingsSection]] = {
    "security": SecuritySettings,
    "access": AccessSettings,
    "billing": BillingSettings,
    "notifications": NotificationSettings,
    "integrations": IntegrationSettings,
    "system": SystemSettings,
    "audit": AuditSettings,
}


class SettingsUpdate(BaseModel):
    """
    Partial settings update.

    Each section is a partial object merged into the stored section.
    Top-level keys that are not sections are ignored.
    """

    model_config = ConfigDict(extra="ignore")

    security: Optional[Dict[str, Any]] = None
    access: Optional[Dict[str, Any]] = None
    billing: Optional[Dict[str, Any]] = None
    notifications: Optional[Dict[str, Any]] = None
    integrations: Optional[Dict[str, Any]] = None
    system: Optional[Dict[str, Any]] = None
    audit: Optional[Dict[str, Any]] = None

    def sections(self) -> Dict[str, Dict[str, Any]]:
        """Sections present in the request with their partial values."""
        return {
            name: values
            for name, values in self.model_dump(exclude_none=True).items()
            if values is not None
        }
