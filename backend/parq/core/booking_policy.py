# backend/parq/core/booking_policy.py
"""
Tunable booking rules.

Services take a ``BookingPolicy`` instead of reading settings directly so
tests (and later per-host overrides) can vary the extension window, the
waitlist offer window and the refund tiers.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from .config import Settings, settings
from .constants import CURRENCY_QUANTUM


def quantize_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(Decimal(CURRENCY_QUANTUM), rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class BookingPolicy:
    start_grace: timedelta = timedelta(minutes=5)
    max_duration: timedelta = timedelta(hours=168)
    price_tolerance: Decimal = Decimal("0.01")
    extension_window: timedelta = timedelta(hours=2)
    waitlist_offer_ttl: timedelta = timedelta(minutes=15)
    issue_description_min_length: int = 10
    issue_full_refund_grace: timedelta = timedelta(minutes=30)
    cancellation_full_refund_before: timedelta = timedelta(hours=24)
    cancellation_partial_refund_before: timedelta = timedelta(hours=2)
    cancellation_partial_refund_ratio: Decimal = Decimal("0.5")

    @classmethod
    def from_settings(cls, source: Optional[Settings] = None) -> "BookingPolicy":
        cfg = source or settings
        return cls(
            start_grace=timedelta(minutes=cfg.booking_start_grace_minutes),
            max_duration=timedelta(hours=cfg.booking_max_duration_hours),
            price_tolerance=cfg.price_tolerance,
            extension_window=timedelta(hours=cfg.extension_window_hours),
            waitlist_offer_ttl=timedelta(minutes=cfg.waitlist_offer_minutes),
            issue_description_min_length=cfg.issue_description_min_length,
            issue_full_refund_grace=timedelta(minutes=cfg.issue_full_refund_grace_minutes),
            cancellation_full_refund_before=timedelta(hours=cfg.cancellation_full_refund_hours),
            cancellation_partial_refund_before=timedelta(
                hours=cfg.cancellation_partial_refund_hours
            ),
            cancellation_partial_refund_ratio=cfg.cancellation_partial_refund_ratio,
        )
