# Overview: Service-layer operations for subscription plans; tier resolution and monthly quotas.

"""
Subscription Plan Tiers

WHY: A patient's subscription plan decides how many credits they receive
each calendar month. The auth provider only tells us which plans are active
for a principal; this module turns that into exactly one tier.

DESIGN PRINCIPLES:
- Closed set of tiers, each with a fixed non-negative monthly quota
- Precedence premium > standard > free_user; the first active tier wins
- No active plan resolves to None (nothing to allocate)
- This module never charges money; it only reflects the plan tier
"""

from __future__ import annotations

from typing import Callable


# =============================================================================
# PLAN TIERS (CONSTANTS)
# =============================================================================

PLAN_FREE = "free_user"
PLAN_STANDARD = "standard"
PLAN_PREMIUM = "premium"

PLAN_CREDITS = {
    PLAN_FREE: 0,
    PLAN_STANDARD: 10,
    PLAN_PREMIUM: 24,
}

# Highest tier first
PLAN_PRECEDENCE = (PLAN_PREMIUM, PLAN_STANDARD, PLAN_FREE)


class PlanError(Exception):
    """Raised for unknown plan tiers."""
    pass


def quota_for(plan_tier: str) -> int:
    """Monthly credit quota for a tier."""
    if plan_tier not in PLAN_CREDITS:
        raise PlanError(f"Unknown plan tier: {plan_tier}. Must be one of {list(PLAN_PRECEDENCE)}")
    return PLAN_CREDITS[plan_tier]


def resolve_plan_tier(has_plan: Callable[[str], bool]) -> str | None:
    """
    Resolve the single effective tier from an entitlement check.

    Args:
        has_plan: Answers whether the principal currently holds a given tier.
            Checked in precedence order; evaluation stops at the first match.

    Returns:
        The highest active tier, or None when no plan is active.
    """
    for tier in PLAN_PRECEDENCE:
        if has_plan(tier):
            return tier
    return None

