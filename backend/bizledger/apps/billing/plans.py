"""
Plan catalogue and limit checks.

Plan tiers:
- FREE: one business, 100 transactions, email support
- PRO: five businesses, unlimited transactions, forecasting
- ENTERPRISE: unlimited everything, dedicated support

`None` as a limit means unlimited.
"""

from __future__ import annotations

import os
from typing import Any, Dict, Optional

from bizledger.apps.accounts.models import PlanCode

STRIPE_PRICE_PRO = os.getenv("STRIPE_PRICE_PRO", "price_test_pro")
STRIPE_PRICE_ENTERPRISE = os.getenv("STRIPE_PRICE_ENTERPRISE", "price_test_enterprise")


PLANS: Dict[str, Dict[str, Any]] = {
    PlanCode.FREE.value: {
        "name": "Free",
        "businesses": 1,
        "transactions": 100,
        "forecasting": False,
        "support": "email",
        "stripe_price_id": None,
    },
    PlanCode.PRO.value: {
        "name": "Pro",
        "businesses": 5,
        "transactions": None,
        "forecasting": True,
        "support": "priority",
        "stripe_price_id": STRIPE_PRICE_PRO,
    },
    PlanCode.ENTERPRISE.value: {
        "name": "Enterprise",
        "businesses": None,
        "transactions": None,
        "forecasting": True,
        "support": "dedicated",
        "stripe_price_id": STRIPE_PRICE_ENTERPRISE,
    },
}


def get_plan(plan_code: Optional[str]) -> Dict[str, Any]:
    """Unknown or missing codes fall back to the free tier."""
    return PLANS.get((plan_code or "").upper(), PLANS[PlanCode.FREE.value])


def plan_for_price(price_id: Optional[str]) -> Optional[str]:
    if not price_id:
        return None
    for code, plan in PLANS.items():
        if plan["stripe_price_id"] and plan["stripe_price_id"] == price_id:
            return code
    return None


def plan_limit(plan_code: Optional[str], key: str) -> Optional[int]:
    return get_plan(plan_code).get(key)


def within_limit(plan_code: Optional[str], key: str, current_count: int) -> bool:
    """True if one more unit of `key` fits the plan."""
    limit = plan_limit(plan_code, key)
    if limit is None:
        return True
    return current_count < limit
