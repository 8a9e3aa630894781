"""
Receipt identity hashing - dedupe keys for at-least-once ingestion

The same purchase can reach us several times (email forward retried, Gmail
scan overlapping a manual upload, webhook redelivery). The dedupe key is the
only thing preventing duplicate receipt rows, so canonicalization must be
stable across cosmetic differences and sensitive to everything else.

Canonical form (fields joined with "|"):
    user_id | merchant | order_id | YYYY-MM-DD | CURRENCY | total_minor_units

- user_id: trimmed
- merchant: trimmed, lower-cased
- order_id: trimmed, case preserved
- purchase date: UTC calendar day (time of day and offset dropped)
- currency: upper-cased, "USD" when absent
- total: integer minor units; strings keep only digits and "-"
"""
import hashlib
import math
import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

import structlog

from packages.common.timeutils import TimestampLike, parse_timestamp

logger = structlog.get_logger()

AmountLike = Union[int, float, Decimal, str]

_NON_AMOUNT_CHARS = re.compile(r"[^0-9-]")


@dataclass(frozen=True)
class ReceiptIdentity:
    """Identity fields of a receipt, as delivered by an extractor"""
    user_id: str
    merchant: Optional[str] = None
    order_id: Optional[str] = None
    purchase_date: Optional[TimestampLike] = None
    currency: Optional[str] = None
    total_amount: Optional[AmountLike] = None


def normalize_amount(value: Optional[AmountLike]) -> int:
    """Integer minor units; anything unusable becomes 0"""
    if value is None or isinstance(value, bool):
        return 0

    if isinstance(value, int):
        return value

    if isinstance(value, float):
        if not math.isfinite(value):
            return 0
        value = Decimal(repr(value))

    if isinstance(value, Decimal):
        if not value.is_finite():
            return 0
        return int(value.to_integral_value(rounding=ROUND_HALF_UP))

    if isinstance(value, str):
        cleaned = _NON_AMOUNT_CHARS.sub("", value)
        try:
            return int(cleaned)
        except ValueError:
            return 0

    return 0


class IdentityHasher:
    """Canonicalize receipt identities and derive SHA-256 dedupe keys"""

    DELIMITER = "|"

    def __init__(self, default_currency: str = "USD"):
        self.default_currency = default_currency

    def resolve_currency(self, currency: Optional[str]) -> str:
        normalized = (currency or "").strip().upper()
        return normalized or self.default_currency

    @staticmethod
    def purchase_day(value: Optional[TimestampLike]) -> str:
        """UTC calendar day as YYYY-MM-DD, or "" when unresolvable"""
        parsed = parse_timestamp(value)
        if parsed is None:
            return ""
        return parsed.date().isoformat()

    def canonicalize(self, receipt: ReceiptIdentity) -> str:
        """Deterministic string form of the receipt identity"""
        parts = [
            (receipt.user_id or "").strip(),
            (receipt.merchant or "").strip().lower(),
            (receipt.order_id or "").strip(),
            self.purchase_day(receipt.purchase_date),
            self.resolve_currency(receipt.currency),
            str(normalize_amount(receipt.total_amount)),
        ]
        return self.DELIMITER.join(parts)

    def hash(self, receipt: ReceiptIdentity) -> str:
        """64-char lowercase hex SHA-256 of the canonical form"""
        canonical = self.canonicalize(receipt)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def is_dedupable(self, receipt: ReceiptIdentity) -> bool:
        """
        Whether the identity is strong enough to dedupe on.

        Without an order id and without a purchase day, distinct purchases of
        the same amount at the same merchant would collapse into one key.
        """
        has_order = bool((receipt.order_id or "").strip())
        has_day = bool(self.purchase_day(receipt.purchase_date))
        return has_order or has_day


# Singleton instance
identity_hasher = IdentityHasher()
