"""
Message composition for milestone reminders and price-drop alerts

Plain text only. Every message closes with the same call to action so users
know to come back and record keep / return.
"""
from datetime import datetime
from typing import Optional

from packages.common.schemas.deadlines import DeadlineType, DueNotice, Milestone
from packages.domain.decisions.engine import format_minor_units
from packages.domain.decisions.schemas import DecisionPreview, Suggestion
from packages.domain.notifications.schemas import NotificationMessage

CALL_TO_ACTION = "Open Covrily to review and decide: return or keep."

SUGGESTION_TEXT = {
    Suggestion.RETURN_FREE: "Returning is free while the window is open.",
    Suggestion.RETURN_WITH_FEE: "A return is still possible, but a restocking fee applies.",
    Suggestion.PRICE_ADJUST: "The price has dropped enough to request a price adjustment.",
    Suggestion.KEEP: "The return and price-adjust windows have closed.",
}


def format_utc(value: Optional[datetime]) -> str:
    if value is None:
        return "unknown"
    return value.strftime("%Y-%m-%d %H:%M:%SZ")


def format_money(cents: Optional[int], currency: str = "USD") -> str:
    if cents is None:
        return ""
    if currency == "USD":
        return f"${format_minor_units(cents)}"
    return f"{format_minor_units(cents)} {currency}"


def _window_label(deadline_type: DeadlineType) -> str:
    if deadline_type == DeadlineType.PRICE_ADJUST:
        return "price-adjust window"
    return "return window"


def _suggestion_line(preview: Optional[DecisionPreview], currency: str) -> str:
    if preview is None:
        return ""
    text = SUGGESTION_TEXT.get(preview.suggestion)
    if text is None:
        return ""
    if preview.suggestion == Suggestion.RETURN_WITH_FEE and preview.restocking_fee_estimate_cents:
        text = f"{text} Estimated fee: {format_money(preview.restocking_fee_estimate_cents, currency)}."
    return f"Suggestion: {text}\n\n"


def compose_milestone_message(
    milestone: Milestone,
    notice: DueNotice,
    preview: Optional[DecisionPreview] = None,
) -> NotificationMessage:
    """Reminder for a deadline reaching due_today or heads_up"""
    merchant = notice.merchant or "your purchase"
    window = _window_label(notice.deadline_type)
    when = format_utc(notice.due_at)
    purchased = notice.purchase_date.date().isoformat() if notice.purchase_date else "unknown"
    amount = format_money(notice.total_cents, notice.currency)
    amount_part = f" ({amount})" if amount else ""

    if Milestone(milestone) == Milestone.DUE_TODAY:
        subject = f"Reminder: {merchant} {window} ends {when}"
        lead = (
            f"Heads up!\n\n"
            f"Your {merchant} purchase from {purchased}{amount_part}\n"
            f"reaches the end of its {window} today.\n"
            f"Deadline (UTC): {when}\n\n"
        )
    else:
        subject = f"Heads-up: {merchant} {window} ends in ~7 days"
        lead = (
            f"Friendly reminder!\n\n"
            f"Your {merchant} purchase from {purchased}{amount_part}\n"
            f"has a {window} ending {when} (in ~7 days).\n\n"
        )

    if notice.order_id:
        lead += f"Order: {notice.order_id}\n\n"

    return NotificationMessage(
        subject=subject,
        body=f"{lead}{_suggestion_line(preview, notice.currency)}{CALL_TO_ACTION}",
    )


def compose_price_drop_message(
    merchant: Optional[str],
    order_id: Optional[str],
    preview: DecisionPreview,
    currency: str = "USD",
) -> NotificationMessage:
    """Alert sent from the price-check endpoint when a drop qualifies"""
    name = merchant or "your purchase"
    totals = preview.totals
    deadline = format_utc(preview.windows.price_adjust_end_at)

    body = (
        f"Good news!\n\n"
        f"We see a potential price drop on your {name} (order {order_id or 'unknown'}).\n"
        f"Original: {format_money(totals.purchase_cents, currency)}\n"
        f"Current:  {format_money(totals.current_cents, currency)}\n"
        f"Potential savings: {format_money(totals.savings_cents, currency)}\n\n"
        f"Price-adjust window ends (UTC): {deadline}\n\n"
        f"Next steps:\n"
        f"1) Visit the merchant order page.\n"
        f"2) Request a price adjustment referencing your order number.\n\n"
        f"{CALL_TO_ACTION}"
    )
    return NotificationMessage(subject=f"Price drop found for {name}", body=body)
