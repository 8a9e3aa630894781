"""
Receipts - identity hashing and ingestion
"""

from packages.domain.receipts.identity import (
    IdentityHasher,
    ReceiptIdentity,
    identity_hasher,
    normalize_amount,
)
from packages.domain.receipts.ingestion import ReceiptIngestionService

__all__ = [
    'IdentityHasher',
    'ReceiptIdentity',
    'ReceiptIngestionService',
    'identity_hasher',
    'normalize_amount',
]
