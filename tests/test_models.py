from decimal import Decimal

import pytest

from healthwatch.models import Finding, Severity, TransactionEvent, normalize_address

CHECKSUMMED = "0x7d2768dE32b0b80b7a3454c06BdAc94A69DDc7A9"


def test_normalize_address_lowercases():
    assert normalize_address(CHECKSUMMED) == CHECKSUMMED.lower()
    assert normalize_address(bytes.fromhex("00" * 19 + "01")) == "0x" + "00" * 19 + "01"


@pytest.mark.parametrize("bad", ["", "0x1234", "not-an-address", None, 42])
def test_normalize_address_rejects_garbage(bad):
    with pytest.raises(ValueError):
        normalize_address(bad)


def test_finding_normalizes_and_serializes():
    f = Finding(CHECKSUMMED, Decimal("1.04"), Decimal("2000001"), Severity.HIGH, "HEALTH-FACTOR-1", block_number=7)
    assert f.address == CHECKSUMMED.lower()
    assert f.to_dict() == {
        "alert_id": "HEALTH-FACTOR-1",
        "address": CHECKSUMMED.lower(),
        "risk_ratio": "1.04",
        "collateral_usd": "2000001",
        "severity": "high",
        "block": 7,
        "resolved": False,
    }
    assert "1.0400" in f.description


@pytest.mark.parametrize("kwargs", [
    dict(risk_ratio=1.04),
    dict(risk_ratio=Decimal("-1")),
    dict(collateral_usd=Decimal("NaN")),
    dict(severity="high"),
    dict(alert_id="  "),
    dict(address="0xdead"),
])
def test_finding_rejects_invalid_fields(kwargs):
    base = dict(address=CHECKSUMMED, risk_ratio=Decimal("1"), collateral_usd=Decimal("1"),
                severity=Severity.HIGH, alert_id="X")
    base.update(kwargs)
    with pytest.raises(ValueError):
        Finding(**base)


def test_transaction_membership_is_case_insensitive():
    tx = TransactionEvent(hash="0x1", addresses={CHECKSUMMED.lower()})
    assert tx.involves(CHECKSUMMED)
    assert not tx.involves("0x" + "11" * 20)
