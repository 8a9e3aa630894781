from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from packages.domain.receipts.identity import (
    IdentityHasher,
    ReceiptIdentity,
    identity_hasher,
    normalize_amount,
)


def make(**overrides):
    fields = dict(
        user_id="user-abc",
        merchant="Store",
        order_id="XYZ",
        purchase_date="2024-05-01",
        currency="usd",
        total_amount="4999",
    )
    fields.update(overrides)
    return ReceiptIdentity(**fields)


def test_canonical_form_normalizes_casing_spacing_and_amounts():
    canonical = identity_hasher.canonicalize(ReceiptIdentity(
        user_id="user-123 ",
        merchant="BestBuy.COM",
        order_id="  ABC-123  ",
        purchase_date="2024-04-15T12:00:00Z",
        currency="usd",
        total_amount=" $1,234.56 ",
    ))

    assert canonical == "user-123|bestbuy.com|ABC-123|2024-04-15|USD|123456"


def test_equivalent_receipts_hash_identically():
    first = identity_hasher.hash(make())
    second = identity_hasher.hash(make(
        user_id=" user-abc ",
        merchant=" store ",
        order_id=" XYZ ",
        purchase_date="2024-05-01T08:00:00-04:00",
        currency="USD",
        total_amount=4999,
    ))

    assert first == second
    assert len(first) == 64
    assert first == first.lower()
    int(first, 16)


def test_time_of_day_within_same_utc_day_is_ignored():
    morning = datetime(2024, 5, 1, 0, 5, tzinfo=timezone.utc)
    evening = datetime(2024, 5, 1, 23, 55, tzinfo=timezone.utc)
    naive = datetime(2024, 5, 1, 12, 0)

    keys = {identity_hasher.hash(make(purchase_date=value)) for value in (morning, evening, naive, date(2024, 5, 1))}
    assert len(keys) == 1


def test_offset_that_crosses_utc_midnight_changes_the_day():
    # 22:00 at -04:00 is 02:00 UTC the next day
    late = "2024-05-01T22:00:00-04:00"
    assert identity_hasher.canonicalize(make(purchase_date=late)).split("|")[3] == "2024-05-02"


@pytest.mark.parametrize("field,value", [
    ("user_id", "user-other"),
    ("merchant", "Other Store"),
    ("order_id", "xyz"),
    ("purchase_date", "2024-05-02"),
    ("currency", "CAD"),
    ("total_amount", 5000),
])
def test_any_identity_difference_changes_the_digest(field, value):
    assert identity_hasher.hash(make(**{field: value})) != identity_hasher.hash(make())


def test_missing_currency_defaults_to_usd():
    assert identity_hasher.canonicalize(make(currency=None)).endswith("|USD|4999")
    assert identity_hasher.canonicalize(make(currency="  ")).endswith("|USD|4999")


def test_unparseable_date_becomes_empty_component():
    canonical = identity_hasher.canonicalize(make(purchase_date="last tuesday"))
    assert canonical == "user-abc|store|XYZ||USD|4999"


@pytest.mark.parametrize("value,expected", [
    (4999, 4999),
    ("4999", 4999),
    ("$49.99", 4999),
    ("-150", -150),
    (1234.5, 1235),
    (Decimal("10.5"), 11),
    (Decimal("10.49"), 10),
    (float("nan"), 0),
    (float("inf"), 0),
    (Decimal("NaN"), 0),
    ("abc", 0),
    ("", 0),
    (None, 0),
    (True, 0),
])
def test_normalize_amount(value, expected):
    assert normalize_amount(value) == expected


def test_is_dedupable_requires_order_id_or_purchase_day():
    assert identity_hasher.is_dedupable(make())
    assert identity_hasher.is_dedupable(make(order_id=None))
    assert identity_hasher.is_dedupable(make(purchase_date=None))
    assert not identity_hasher.is_dedupable(make(order_id="  ", purchase_date="not a date"))


def test_custom_default_currency():
    hasher = IdentityHasher(default_currency="CAD")
    assert hasher.canonicalize(make(currency=None)).endswith("|CAD|4999")


def test_purchase_day_handles_datetime_offsets():
    value = datetime(2024, 1, 1, 1, 0, tzinfo=timezone(timedelta(hours=5)))
    assert IdentityHasher.purchase_day(value) == "2023-12-31"
