import json
from decimal import Decimal

import pytest

from batch_distributor.batch import (
    Batch,
    Recipient,
    checked_deadline,
    checked_total,
    format_units,
    normalize_batch_id,
    parse_recipients,
    parse_units,
    random_batch_id,
    validate_recipients,
)
from batch_distributor.config import UINT256_MAX
from batch_distributor.errors import (
    AmountOverflow,
    InvalidAmount,
    InvalidBatchId,
    InvalidDeadline,
)

from conftest import BATCH_ID, NOW, R1, R2, TOKEN


@pytest.mark.parametrize("value,decimals,expected", [
    ("1", 6, 1_000_000),
    ("2.5", 6, 2_500_000),
    ("0.000001", 6, 1),
    ("12345678901.123456789012345678", 18, 12345678901123456789012345678),
    (3, 0, 3),
])
def test_parse_units(value, decimals, expected):
    assert parse_units(value, decimals) == expected


@pytest.mark.parametrize("value", ["0.0000001", "abc", "NaN"])
def test_parse_units_rejects(value):
    with pytest.raises(ValueError):
        parse_units(value, 6)


def test_format_units():
    assert format_units(2_500_000, 6) == "2.5"
    assert format_units(1_000_000, 6) == "1"
    assert format_units(1, 18) == "0.000000000000000001"


def test_random_batch_id():
    a, b = random_batch_id(), random_batch_id()
    assert len(a) == 32
    assert a != b


def test_normalize_batch_id():
    raw = normalize_batch_id(BATCH_ID)
    assert raw[0] == 0xAA and raw[-1] == 0x01
    assert normalize_batch_id(raw) == raw
    assert normalize_batch_id(BATCH_ID[2:]) == raw
    for bad in ("0x12", "0x" + "zz" * 32, b"\x01" * 31, 12):
        with pytest.raises(InvalidBatchId):
            normalize_batch_id(bad)


def test_checked_total():
    assert checked_total([100, 200]) == 300
    assert checked_total([UINT256_MAX]) == UINT256_MAX
    with pytest.raises(AmountOverflow):
        checked_total([UINT256_MAX, 1])
    with pytest.raises(InvalidAmount):
        checked_total([1, True])
    with pytest.raises(InvalidAmount):
        checked_total([1.5])


def test_batch_json_keeps_large_amounts():
    batch = Batch(BATCH_ID, TOKEN, [R1], [UINT256_MAX], NOW)
    data = json.loads(batch.to_json())
    assert data["amounts"] == [str(UINT256_MAX)]
    assert Batch.from_json(batch.to_json()) == batch


def test_batch_from_dict_requires_fields():
    with pytest.raises(ValueError, match="deadline"):
        Batch.from_dict({"batchId": BATCH_ID, "asset": TOKEN, "recipients": [], "amounts": []})


def test_batch_from_recipients():
    recipients = [Recipient(R1, Decimal("1.5")), Recipient(R2, Decimal("2"))]
    batch = Batch.from_recipients(recipients, asset=TOKEN.lower(), decimals=6, deadline=NOW)
    assert batch.asset == TOKEN
    assert batch.amounts == [1_500_000, 2_000_000]
    assert batch.total_amount == 3_500_000
    assert len(batch.batch_id) == 32


def test_expiry():
    batch = Batch(BATCH_ID, TOKEN, [R1], [1], NOW)
    assert not batch.is_expired(NOW)
    assert batch.is_expired(NOW + 1)


def test_parse_csv(tmp_path):
    path = tmp_path / "r.csv"
    path.write_text(f"Address, Amount ,label\n{R1},1.5,Alice\n{R2}, 2 ,\n")
    recipients = parse_recipients(path)
    assert recipients == [
        Recipient(R1, Decimal("1.5"), "Alice"),
        Recipient(R2, Decimal("2"), ""),
    ]


def test_parse_csv_bad_amount(tmp_path):
    path = tmp_path / "r.csv"
    path.write_text(f"address,amount\n{R1},lots\n")
    with pytest.raises(ValueError, match="Row 2"):
        parse_recipients(path)


@pytest.mark.parametrize("amount", ["nan", "NaN", "inf", "-Infinity", "sNaN"])
def test_parse_csv_non_finite_amount(tmp_path, amount):
    path = tmp_path / "r.csv"
    path.write_text(f"address,amount\n{R1},{amount}\n")
    with pytest.raises(ValueError, match="Row 2"):
        parse_recipients(path)


def test_parse_json_non_finite_amount(tmp_path):
    path = tmp_path / "r.json"
    path.write_text('[{"address": "' + R1 + '", "amount": Infinity}]')
    with pytest.raises(ValueError, match="Entry 0"):
        parse_recipients(path)


def test_parse_json(tmp_path):
    path = tmp_path / "r.json"
    path.write_text(json.dumps([{"address": R1, "amount": "0.1"}, {"address": R2, "amount": 3}]))
    recipients = parse_recipients(path)
    assert [r.amount for r in recipients] == [Decimal("0.1"), Decimal("3")]


def test_parse_json_missing_field(tmp_path):
    path = tmp_path / "r.json"
    path.write_text(json.dumps([{"address": R1}]))
    with pytest.raises(ValueError, match="amount"):
        parse_recipients(path)


def test_validate_recipients():
    ok, errors = validate_recipients([Recipient(R1, Decimal(1)), Recipient(R1, Decimal(2))])
    assert ok and errors == []

    ok, errors = validate_recipients(
        [Recipient(R1, Decimal(1)), Recipient(R1, Decimal(2))], allow_duplicates=False
    )
    assert not ok and "Duplicate" in errors[0]

    ok, errors = validate_recipients([
        Recipient("0x" + "00" * 20, Decimal(1)),
        Recipient("not-an-address", Decimal(1)),
        Recipient(R2, Decimal(0)),
    ])
    assert not ok
    assert len(errors) == 3

    ok, errors = validate_recipients([Recipient(R1, Decimal(1))] * 3, max_batch_size=2)
    assert not ok and "maximum batch size" in errors[0]

    ok, errors = validate_recipients([])
    assert not ok


def test_validate_non_finite_amount():
    ok, errors = validate_recipients([Recipient(R1, Decimal("nan")), Recipient(R2, Decimal("-inf"))])
    assert not ok
    assert all("finite" in e for e in errors)


def test_checked_deadline():
    assert checked_deadline(0) == 0
    assert checked_deadline(UINT256_MAX) == UINT256_MAX
    for bad in (-1, UINT256_MAX + 1, "1", 1.0, None, False):
        with pytest.raises(InvalidDeadline):
            checked_deadline(bad)
