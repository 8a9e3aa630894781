"""
Data schemas for the decision engine
"""
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from packages.domain.policies.schemas import MerchantPolicy


class Suggestion(str, Enum):
    """What we recommend the user does with a purchase"""
    KEEP = "keep"
    RETURN_FREE = "return_free"
    RETURN_WITH_FEE = "return_w_fee"
    PRICE_ADJUST = "price_adjust"
    UNKNOWN = "unknown"


class ReceiptLite(BaseModel):
    """
    The subset of a receipt the decision engine reads.

    Any field may be missing; extractors return None rather than guessing.
    """
    model_config = ConfigDict(frozen=True)

    merchant: Optional[str] = None
    purchase_date: Optional[Union[datetime, date, str]] = None
    total_cents: Optional[int] = Field(None, description="Purchase total in minor units")


class DecisionTotals(BaseModel):
    model_config = ConfigDict(frozen=True)

    purchase_cents: Optional[int] = None
    current_cents: Optional[int] = None
    savings_cents: Optional[int] = None


class DecisionWindows(BaseModel):
    model_config = ConfigDict(frozen=True)

    return_end_at: Optional[datetime] = None
    price_adjust_end_at: Optional[datetime] = None
    days_left_return: Optional[int] = None
    days_left_adjust: Optional[int] = None


class DecisionPreview(BaseModel):
    """
    Result of evaluating one receipt at one instant.

    Immutable; identical inputs always produce an equal preview.
    """
    model_config = ConfigDict(frozen=True)

    policy: MerchantPolicy
    purchase_at: Optional[datetime] = None
    now: datetime
    totals: DecisionTotals = Field(default_factory=DecisionTotals)
    windows: DecisionWindows = Field(default_factory=DecisionWindows)
    suggestion: Suggestion
    restocking_fee_estimate_cents: Optional[int] = None
    reason: str

    @property
    def actionable(self) -> bool:
        """True when the user can still do something (return or adjust)"""
        return self.suggestion in (
            Suggestion.RETURN_FREE,
            Suggestion.RETURN_WITH_FEE,
            Suggestion.PRICE_ADJUST,
        )


def price_to_cents(value: Union[int, float, str, Decimal, None]) -> Optional[int]:
    """Major-unit price (e.g. 19.99) → minor units, half-up; None when unusable"""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return int((amount * 100).to_integral_value(rounding=ROUND_HALF_UP))


class PriceCheckRequest(BaseModel):
    """
    Current-price observation for a stored receipt.

    Give the price either in minor units or as a decimal major-unit amount;
    current_price_cents wins when both are present.
    """
    receipt_id: str = Field(..., min_length=1)
    current_price_cents: Optional[int] = Field(None, ge=0)
    current_price: Optional[Decimal] = Field(None, ge=0, description="Decimal amount, e.g. 279.99")
    send: bool = Field(default=False, description="Email the user when the drop qualifies")

    @model_validator(mode="after")
    def check_price_present(self):
        if self.current_cents() is None:
            raise ValueError("current_price or current_price_cents required")
        return self

    def current_cents(self) -> Optional[int]:
        if self.current_price_cents is not None:
            return self.current_price_cents
        return price_to_cents(self.current_price)
