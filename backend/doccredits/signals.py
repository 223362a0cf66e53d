# Overview: Post-commit signals emitted by the credit services.

from __future__ import annotations

from blinker import Namespace
from flask import current_app

_signals = Namespace()

# Sent after an allocation commits. Receivers invalidate cached views that
# display balances (doctor listings, appointment pages).
credits_allocated = _signals.signal("credits-allocated")

STALE_VIEW_PATHS = ("/doctors", "/appointments")


def notify_credits_allocated(user_id: int, amount: int, plan_tier: str) -> None:
    """
    Fire-and-forget cache invalidation signal.

    Receiver failures are logged and swallowed; the allocation has already
    committed and must not be reported as failed because of them.
    """
    try:
        credits_allocated.send(
            current_app._get_current_object(),
            user_id=user_id,
            amount=amount,
            plan_tier=plan_tier,
            paths=STALE_VIEW_PATHS,
        )
    except Exception:
        current_app.logger.exception(
            "Cache invalidation after allocation failed (user_id=%s, plan=%s)", user_id, plan_tier
        )
