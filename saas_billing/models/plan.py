"""
Subscription plan model (the plan catalog).

WHY: Plans are rows rather than constants so admins can rename them and
adjust feature lists and limits without a deploy. Price, currency and
interval are fixed once a plan exists: subscriptions snapshot the price at
assignment time, and the gateway bills against the interval.

Limits use ``-1`` for unlimited. Non-numeric limits (storage, support tier)
are stored as display strings.
"""

import enum
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import Column, String, Numeric, JSON

from saas_billing.models.base import Base, TimestampMixin, PrimaryKeyMixin


UNLIMITED = -1

# Fields an admin may change on an existing plan. Anything else in an
# update payload is ignored.
EDITABLE_PLAN_FIELDS = ("name", "features", "limits")
PROTECTED_PLAN_FIELDS = ("code", "price", "currency", "interval")


class BillingInterval(str, enum.Enum):
    """Billing interval of a plan (and billing period of a subscription)."""

    MONTH = "month"
    YEAR = "year"


class Plan(Base, PrimaryKeyMixin, TimestampMixin):
    """
    A named pricing tier.

    Fields:
    - code: stable identifier referenced by subscriptions ("free", "pro")
    - price / currency / interval: immutable after creation
    - features: ordered list of display strings
    - limits: named caps, e.g. {"invoicesPerMonth": 5, "clients": 3, "storage": "100 MB"}
    - stripe_price_id: Stripe recurring price used for API-created subscriptions
    """

    __tablename__ = "subscription_plans"

    code = Column(String(50), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    currency = Column(String(3), nullable=False, default="EUR")
    interval = Column(String(10), nullable=False, default=BillingInterval.MONTH.value)
    features = Column(JSON, nullable=False, default=list)
    limits = Column(JSON, nullable=False, default=dict)
    stripe_price_id = Column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<Plan(code={self.code}, price={self.price} {self.currency}/{self.interval})>"

    @property
    def is_paid(self) -> bool:
        """True when the plan collects money (checkout runs in subscription mode)."""
        return Decimal(self.price or 0) > 0

    def get_limit(self, name: str) -> Optional[Union[int, str]]:
        """Return a named limit, or None when the plan does not define it."""
        return (self.limits or {}).get(name)


# Catalog seed. Loaded by the initial migration and by the test factories.
DEFAULT_PLANS: List[Dict[str, Any]] = [
    {
        "code": "free",
        "name": "Plan Gratuit",
        "price": Decimal("0.00"),
        "currency": "EUR",
        "interval": BillingInterval.MONTH.value,
        "features": [
            "Jusqu'à 5 factures par mois",
            "Gestion de 3 clients maximum",
            "Stockage de 100 MB",
            "Support par email",
        ],
        "limits": {
            "invoicesPerMonth": 5,
            "clients": 3,
            "storage": "100 MB",
            "support": "Email (48h)",
        },
    },
    {
        "code": "pro",
        "name": "Plan Pro",
        "price": Decimal("12.00"),
        "currency": "EUR",
        "interval": BillingInterval.MONTH.value,
        "features": [
            "Factures illimitées",
            "Clients illimités",
            "Stockage de 10 GB",
            "Support prioritaire",
            "Export CSV avancé",
            "Personnalisation des factures",
            "Filigrane personnalisé",
            "Rapports et statistiques avancés",
        ],
        "limits": {
            "invoicesPerMonth": UNLIMITED,
            "clients": UNLIMITED,
            "storage": "10 GB",
            "support": "Email & Chat (2h)",
        },
    },
]
