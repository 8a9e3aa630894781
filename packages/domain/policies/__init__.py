"""
Merchant policies - return and price-adjustment terms keyed by merchant
"""

from packages.domain.policies.catalog import (
    DEFAULT_POLICY,
    PolicyCatalog,
    normalize_merchant,
    policy_catalog,
)
from packages.domain.policies.schemas import MerchantPolicy

__all__ = [
    'DEFAULT_POLICY',
    'MerchantPolicy',
    'PolicyCatalog',
    'normalize_merchant',
    'policy_catalog',
]
