"""Refund policy evaluation for cancellations and issue reports."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from ..core.booking_policy import BookingPolicy, quantize_money
from ..core.enums import ActorRole
from ..core.timezone_utils import ensure_utc
from ..models.booking import Booking, BookingStatus
from ..models.issue_report import IssueReport, IssueResolution, IssueType

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class RefundPolicyResult:
    eligible: bool
    amount: Decimal = ZERO
    resolution: Optional[str] = None
    reason: Optional[str] = None
    policy_basis: str = ""
    requires_review: bool = False

    def to_payload(self) -> dict[str, object]:
        return {
            "eligible": self.eligible,
            "amount": str(self.amount),
            "resolution": self.resolution,
            "reason": self.reason,
            "policy_basis": self.policy_basis,
            "requires_review": self.requires_review,
        }


class RefundPolicyEngine:
    """Determines refund eligibility and amount based on business rules."""

    def __init__(self, policy: Optional[BookingPolicy] = None) -> None:
        self.policy = policy or BookingPolicy()

    def unused_share(self, booking: Booking, since: datetime) -> Decimal:
        """Part of the booking's price covering the window left after ``since``."""
        window = booking.window
        total = Decimal(booking.total_price)
        remaining = window.remaining_after(ensure_utc(since))
        fraction = Decimal(int(remaining.total_seconds())) / Decimal(
            int(window.duration.total_seconds())
        )
        return quantize_money(total * fraction)

    def evaluate_cancellation(
        self, booking: Booking, actor: ActorRole, now: datetime
    ) -> RefundPolicyResult:
        now = ensure_utc(now)
        total = quantize_money(Decimal(booking.total_price))
        status = booking.booking_status

        if status == BookingStatus.PENDING:
            return RefundPolicyResult(
                eligible=False,
                reason="Payment was never confirmed",
                policy_basis="Pending bookings hold no payment to refund",
            )

        if actor in (ActorRole.HOST, ActorRole.SYSTEM):
            if status == BookingStatus.ACTIVE:
                return RefundPolicyResult(
                    eligible=True,
                    amount=self.unused_share(booking, now),
                    policy_basis=f"{actor.value} cancelled during the booking: unused time refunded",
                )
            return RefundPolicyResult(
                eligible=True,
                amount=total,
                policy_basis=f"{actor.value} cancelled before the booking: full refund",
            )

        lead = booking.window.start - now
        if lead >= self.policy.cancellation_full_refund_before:
            return RefundPolicyResult(
                eligible=True,
                amount=total,
                policy_basis="Cancelled well ahead of start: full refund",
            )
        if lead >= self.policy.cancellation_partial_refund_before:
            return RefundPolicyResult(
                eligible=True,
                amount=quantize_money(total * self.policy.cancellation_partial_refund_ratio),
                policy_basis="Cancelled close to start: partial refund",
            )
        return RefundPolicyResult(
            eligible=False,
            reason="Cancelled too close to start",
            policy_basis="Late renter cancellation: no refund",
        )

    def evaluate_issue(self, booking: Booking, report: IssueReport) -> RefundPolicyResult:
        """Advisory outcome for an issue report; the resolver makes the final call."""
        reported_at = ensure_utc(report.reported_at)
        issue_type = IssueType(report.issue_type)
        total = quantize_money(Decimal(booking.total_price))

        if issue_type in (IssueType.BLOCKED, IssueType.NO_ACCESS):
            if reported_at < booking.window.start + self.policy.issue_full_refund_grace:
                return RefundPolicyResult(
                    eligible=True,
                    amount=total,
                    resolution=IssueResolution.REFUNDED_FULL.value,
                    policy_basis="Space unusable from the start: full refund",
                )
            return RefundPolicyResult(
                eligible=True,
                amount=self.unused_share(booking, reported_at),
                resolution=IssueResolution.REFUNDED_PARTIAL.value,
                policy_basis="Space became unusable mid-booking: unused time refunded",
            )

        if issue_type == IssueType.DAMAGED:
            return RefundPolicyResult(
                eligible=True,
                amount=self.unused_share(booking, reported_at),
                resolution=IssueResolution.REFUNDED_PARTIAL.value,
                policy_basis="Damaged space: unused time refunded",
            )

        return RefundPolicyResult(
            eligible=False,
            reason="Issue needs manual review",
            policy_basis="Uncategorized issue",
            requires_review=True,
        )
