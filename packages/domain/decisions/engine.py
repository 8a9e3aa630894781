"""
Decision Engine - Pure evaluation of return / price-adjust options for a receipt

NO I/O, NO clock reads: `now` is always passed in, so the same inputs give the
same DecisionPreview. Safe to call from request handlers, the scheduler, and
table-driven tests alike.

Rule priority (first match wins):
1. Price-adjust window open, current price known, savings ≥ threshold → price_adjust
2. Return window open → return_w_fee (if the merchant charges a restocking fee)
   or return_free
3. Otherwise → keep

Savings threshold: max(200 minor units, 2% of the purchase total).
"""
import math
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from packages.common.timeutils import ensure_utc, parse_timestamp
from packages.domain.decisions.schemas import (
    DecisionPreview,
    DecisionTotals,
    DecisionWindows,
    ReceiptLite,
    Suggestion,
)
from packages.domain.policies.catalog import PolicyCatalog, policy_catalog

MIN_SAVINGS_CENTS = 200
MIN_SAVINGS_RATE = Decimal("0.02")

SECONDS_PER_DAY = 24 * 60 * 60


def _round_half_up(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_HALF_UP))


def days_until(end: datetime, now: datetime) -> int:
    """Whole days from now to end, rounded up"""
    return math.ceil((end - now).total_seconds() / SECONDS_PER_DAY)


def minimum_savings(purchase_cents: int) -> int:
    """Smallest price drop worth a price-adjust request"""
    return max(MIN_SAVINGS_CENTS, _round_half_up(MIN_SAVINGS_RATE * purchase_cents))


def restocking_fee(fee_pct: float, purchase_cents: int) -> int:
    return _round_half_up(Decimal(str(fee_pct)) / 100 * purchase_cents)


def format_minor_units(cents: int) -> str:
    return f"{cents / 100:.2f}"


def preview_decision(
    receipt: ReceiptLite,
    now: datetime,
    current_amount: Optional[int] = None,
    catalog: PolicyCatalog = policy_catalog,
) -> DecisionPreview:
    """
    Evaluate what the user should do with a purchase right now.

    Args:
        receipt: Merchant, purchase date and total (any may be missing)
        now: Evaluation instant (naive values are read as UTC)
        current_amount: Current price in minor units, if known
        catalog: Policy lookup

    Returns:
        DecisionPreview. Missing or invalid inputs yield suggestion=unknown
        with a reason instead of raising.
    """
    now = ensure_utc(now)
    policy = catalog.resolve(receipt.merchant)

    total = receipt.total_cents
    if receipt.purchase_date is None or receipt.purchase_date == "" or total is None or total <= 0:
        return DecisionPreview(
            policy=policy,
            now=now,
            suggestion=Suggestion.UNKNOWN,
            reason="missing purchase date or total",
        )

    purchase = parse_timestamp(receipt.purchase_date)
    if purchase is None:
        return DecisionPreview(
            policy=policy,
            now=now,
            suggestion=Suggestion.UNKNOWN,
            reason="invalid purchase date",
        )

    return_end = purchase + timedelta(days=policy.return_window_days)
    adjust_end = None
    if policy.price_adjust_window_days > 0:
        adjust_end = purchase + timedelta(days=policy.price_adjust_window_days)

    within_return = now <= return_end
    within_adjust = adjust_end is not None and now <= adjust_end

    savings = None
    if current_amount is not None:
        savings = max(0, total - current_amount)

    fee_estimate = None
    if within_adjust and savings is not None and savings >= minimum_savings(total):
        suggestion = Suggestion.PRICE_ADJUST
        reason = (
            f"price dropped by {format_minor_units(savings)} within the "
            f"{policy.price_adjust_window_days}-day price adjustment window"
        )
    elif within_return:
        if policy.restocking_fee_pct > 0:
            suggestion = Suggestion.RETURN_WITH_FEE
            fee_estimate = restocking_fee(policy.restocking_fee_pct, total)
            reason = f"return possible with ~{policy.restocking_fee_pct:g}% restocking fee"
        else:
            suggestion = Suggestion.RETURN_FREE
            reason = "return window still open"
    else:
        suggestion = Suggestion.KEEP
        reason = "windows closed"

    return DecisionPreview(
        policy=policy,
        purchase_at=purchase,
        now=now,
        totals=DecisionTotals(
            purchase_cents=total,
            current_cents=current_amount,
            savings_cents=savings,
        ),
        windows=DecisionWindows(
            return_end_at=return_end,
            price_adjust_end_at=adjust_end,
            days_left_return=days_until(return_end, now) if within_return else 0,
            days_left_adjust=days_until(adjust_end, now) if within_adjust else 0,
        ),
        suggestion=suggestion,
        restocking_fee_estimate_cents=fee_estimate,
        reason=reason,
    )
