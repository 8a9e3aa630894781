import json

import pytest

from packages.domain.policies import (
    DEFAULT_POLICY,
    MerchantPolicy,
    PolicyCatalog,
    normalize_merchant,
    policy_catalog,
)


@pytest.mark.parametrize("raw,expected", [
    ("  Best   Buy ", "best buy"),
    ("www.BestBuy.com", "bestbuy"),
    ("amazon.ca", "amazon"),
    ("amazon.co.uk", "amazon"),
    ("H&M", "h&m"),
    ("", ""),
    (None, ""),
])
def test_normalize_merchant(raw, expected):
    assert normalize_merchant(raw) == expected


@pytest.mark.parametrize("merchant,canonical", [
    ("Best Buy", "best buy"),
    ("bestbuy.com", "best buy"),
    ("www.bestbuy.ca", "best buy"),
    ("AMZN", "amazon"),
    ("Costco Wholesale", "costco"),
    ("hm.com", "h&m"),
])
def test_resolves_names_domains_and_aliases(merchant, canonical):
    assert policy_catalog.resolve(merchant).merchant == canonical


@pytest.mark.parametrize("merchant", [None, "", "   ", "Corner Bodega"])
def test_unknown_merchants_get_default_policy(merchant):
    policy = policy_catalog.resolve(merchant)

    assert policy == DEFAULT_POLICY
    assert policy.return_window_days == 30
    assert policy.price_adjust_window_days == 0
    assert policy.restocking_fee_pct == 0


def test_builtin_terms():
    assert policy_catalog.resolve("Best Buy").price_adjust_window_days == 15
    assert policy_catalog.resolve("Newegg").restocking_fee_pct == 15.0
    assert "target.com" in policy_catalog
    assert "corner bodega" not in policy_catalog


def test_extra_policies_extend_the_catalog():
    catalog = PolicyCatalog(
        policies={"REI": MerchantPolicy(merchant="rei", return_window_days=365)},
        aliases={"rei co-op": "rei"},
    )

    assert catalog.resolve("rei.com").return_window_days == 365
    assert catalog.resolve("REI Co-op").merchant == "rei"
    assert catalog.resolve("Best Buy").merchant == "best buy"


def test_from_file_overrides_builtin_entries(tmp_path):
    path = tmp_path / "policies.json"
    path.write_text(json.dumps({
        "policies": {
            "amazon": {"return_window_days": 45},
            "ikea": {"return_window_days": 365, "restocking_fee_pct": 5},
        },
        "aliases": {"ikea canada": "ikea"},
    }))

    catalog = PolicyCatalog.from_file(str(path))

    assert catalog.resolve("Amazon").return_window_days == 45
    assert catalog.resolve("IKEA Canada").restocking_fee_pct == 5
    # The shared catalog is unaffected
    assert policy_catalog.resolve("Amazon").return_window_days == 30
