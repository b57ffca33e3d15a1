import pandas as pd

from healthwatch.archive import load_offset, save_offset, write_records

NOW = 1_700_000_000  # 2023-11-14T22


def record(block):
    return {"alert_id": "HEALTH-FACTOR-1", "address": "0x" + "00" * 19 + "01", "risk_ratio": "1.04",
            "collateral_usd": "2000001", "severity": "high", "block": block, "resolved": False}


def test_appends_to_hourly_file(tmp_path):
    first = write_records([record(1)], tmp_path, "health-alerts", now=NOW)
    second = write_records([record(2), record(3)], tmp_path, "health-alerts", now=NOW + 60)

    assert first == second == tmp_path / "health-alerts-20231114T22.parquet"
    assert pd.read_parquet(first)["block"].tolist() == [1, 2, 3]


def test_nothing_to_write(tmp_path):
    assert write_records([], tmp_path, "health-alerts", now=NOW) is None
    assert list(tmp_path.iterdir()) == []


def test_offset_file(tmp_path):
    assert load_offset(tmp_path, "health-alerts") is None
    save_offset(tmp_path, "health-alerts", 41)
    assert load_offset(tmp_path, "health-alerts") == 41
    (tmp_path / "health-alerts-offset.txt").write_text("junk")
    assert load_offset(tmp_path, "health-alerts") is None
