"""
Policy Catalog - Keyed lookup from merchant identifier to return/price-adjust terms

NO per-merchant branching: merchants live in MERCHANT_POLICIES (canonical key →
terms) and MERCHANT_ALIASES (spelling/domain → canonical key). Adding a
merchant is a data change, either here or in the JSON file named by
MERCHANT_POLICIES_FILE.

Normalization before lookup:
- trim, lower-case, collapse internal whitespace
- drop a leading "www." and a trailing common TLD (".com", ".ca", ...)

Unknown merchants get DEFAULT_POLICY: 30-day returns, no price adjustment,
no restocking fee.
"""
import json
import re
from pathlib import Path
from typing import Dict, Mapping, Optional

import structlog

from packages.domain.policies.schemas import MerchantPolicy

logger = structlog.get_logger()

DEFAULT_POLICY = MerchantPolicy(
    merchant="default",
    return_window_days=30,
    price_adjust_window_days=0,
    restocking_fee_pct=0.0,
)

_TLD_SUFFIX = re.compile(r"\.(com|ca|net|org|co|io|shop|store|us|co\.uk)$")
_WHITESPACE = re.compile(r"\s+")


def normalize_merchant(raw: Optional[str]) -> str:
    """Reduce a merchant name or domain to its lookup key"""
    if not raw:
        return ""
    key = _WHITESPACE.sub(" ", str(raw).strip().lower())
    if key.startswith("www."):
        key = key[4:]
    return _TLD_SUFFIX.sub("", key)


class PolicyCatalog:
    """
    Resolves merchants to MerchantPolicy using a lookup table with a default.
    """

    # === CANONICAL MERCHANT → POLICY ===
    MERCHANT_POLICIES: Dict[str, MerchantPolicy] = {
        "best buy": MerchantPolicy(merchant="best buy", return_window_days=15, price_adjust_window_days=15),
        "amazon": MerchantPolicy(merchant="amazon", return_window_days=30),
        "target": MerchantPolicy(merchant="target", return_window_days=90, price_adjust_window_days=14),
        "walmart": MerchantPolicy(merchant="walmart", return_window_days=90),
        "costco": MerchantPolicy(merchant="costco", return_window_days=90, price_adjust_window_days=30),
        "apple": MerchantPolicy(merchant="apple", return_window_days=14, price_adjust_window_days=14),
        "h&m": MerchantPolicy(merchant="h&m", return_window_days=30),
        "newegg": MerchantPolicy(merchant="newegg", return_window_days=30, restocking_fee_pct=15.0),
    }

    # === ALIAS → CANONICAL MERCHANT ===
    MERCHANT_ALIASES: Dict[str, str] = {
        "bestbuy": "best buy",
        "best buy canada": "best buy",
        "amzn": "amazon",
        "walmart canada": "walmart",
        "costco wholesale": "costco",
        "apple store": "apple",
        "hm": "h&m",
        "h & m": "h&m",
    }

    def __init__(
        self,
        policies: Optional[Mapping[str, MerchantPolicy]] = None,
        aliases: Optional[Mapping[str, str]] = None,
        default: MerchantPolicy = DEFAULT_POLICY,
    ):
        merged_policies = dict(self.MERCHANT_POLICIES)
        merged_policies.update(policies or {})
        merged_aliases = dict(self.MERCHANT_ALIASES)
        merged_aliases.update(aliases or {})

        # Keys are stored normalized so lookups only normalize the input side
        self._policies = {normalize_merchant(k): v for k, v in merged_policies.items()}
        self._aliases = {normalize_merchant(k): normalize_merchant(v) for k, v in merged_aliases.items()}
        self.default = default

    @classmethod
    def from_file(cls, path: str) -> "PolicyCatalog":
        """
        Build a catalog with overrides from a JSON file.

        Expected shape:
            {
              "policies": {"rei": {"return_window_days": 365}},
              "aliases": {"rei.com": "rei"}
            }
        """
        payload = json.loads(Path(path).read_text(encoding="utf-8"))

        policies = {
            name: MerchantPolicy(merchant=normalize_merchant(name), **terms)
            for name, terms in (payload.get("policies") or {}).items()
        }
        aliases = payload.get("aliases") or {}

        logger.info("merchant_policies_loaded",
                   path=path,
                   policies=len(policies),
                   aliases=len(aliases))

        return cls(policies=policies, aliases=aliases)

    def resolve(self, merchant: Optional[str]) -> MerchantPolicy:
        """
        Look up the policy for a merchant identifier.

        Never raises; unknown or empty identifiers fall back to the default.
        """
        key = normalize_merchant(merchant)
        key = self._aliases.get(key, key)

        policy = self._policies.get(key)
        if policy is None:
            logger.debug("merchant_policy_default",
                        merchant=merchant,
                        normalized=key)
            return self.default

        return policy

    def __contains__(self, merchant: str) -> bool:
        key = normalize_merchant(merchant)
        return self._aliases.get(key, key) in self._policies


# Built-in catalog (no file overrides)
policy_catalog = PolicyCatalog()
