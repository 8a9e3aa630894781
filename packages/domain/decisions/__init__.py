"""
Decision engine - turns a receipt (and optionally a current price) into a suggestion

keep | return_free | return_w_fee | price_adjust | unknown
"""

from packages.domain.decisions.engine import minimum_savings, preview_decision
from packages.domain.decisions.schemas import (
    DecisionPreview,
    DecisionTotals,
    DecisionWindows,
    PriceCheckRequest,
    ReceiptLite,
    Suggestion,
    price_to_cents,
)

__all__ = [
    'DecisionPreview',
    'DecisionTotals',
    'DecisionWindows',
    'PriceCheckRequest',
    'ReceiptLite',
    'Suggestion',
    'minimum_savings',
    'preview_decision',
    'price_to_cents',
]
