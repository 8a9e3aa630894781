"""
Data schemas for merchant policies
"""
from pydantic import BaseModel, ConfigDict, Field


class MerchantPolicy(BaseModel):
    """
    Return / price-adjustment terms for one merchant.

    price_adjust_window_days == 0 disables price adjustment.
    restocking_fee_pct == 0 means free returns.
    """
    model_config = ConfigDict(frozen=True)

    merchant: str = Field(..., description="Canonical merchant key, or 'default'")
    return_window_days: int = Field(..., ge=0, description="Days after purchase a return is accepted")
    price_adjust_window_days: int = Field(default=0, ge=0, description="Days after purchase a price match is honoured")
    restocking_fee_pct: float = Field(default=0.0, ge=0, le=100, description="Restocking fee as a percentage of total")
