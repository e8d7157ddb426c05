from datetime import datetime, timezone
from pathlib import Path

from mining_comps.currency import CurrencyConverter
from mining_comps.facts import FACT_SPECS
from mining_comps.models import Reading
from mining_comps.provenance import ProvenanceLog, format_entry
from mining_comps.reconcile import reconcile

NOW = datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc)


def test_entry_lists_every_source_and_the_outcome():
    spec = FACT_SPECS["stock_price"]
    readings = [
        Reading(source="yahoo_finance", value=5.1, currency="CAD"),
        Reading(source="tradingview"),
        Reading(source="mining_feeds", value=5.08, currency="CAD"),
    ]
    resolved = reconcile(spec, readings, CurrencyConverter(), "XYZ.TO", NOW)
    line = format_entry("XYZ.TO", spec, readings, resolved)

    assert line.startswith("2025-01-06T12:00:00+00:00 [XYZ.TO] stock_price:")
    assert "yahoo_finance=5.1 CAD" in line
    assert "tradingview=N/A -" in line
    assert "resolved=5.09 CAD" in line
    assert "FLAGGED" not in line
    assert "NO DATA" not in line


def test_entry_marks_flagged_and_missing():
    spec = FACT_SPECS["market_cap"]
    readings = [
        Reading(source="yahoo_finance", value=500e6, currency="CAD"),
        Reading(source="mining_feeds", value=650e6, currency="CAD"),
    ]
    flagged = reconcile(spec, readings, CurrencyConverter(), "XYZ.TO", NOW)
    assert "FLAGGED (relative variance 0.3 > 0.05)" in format_entry("XYZ.TO", spec, readings, flagged)

    empty = reconcile(spec, [], CurrencyConverter(), "XYZ.TO", NOW)
    line = format_entry("XYZ.TO", spec, [], empty)
    assert "no sources" in line
    assert line.endswith("NO DATA")


def test_log_appends_lines(tmp_path: Path):
    log = ProvenanceLog(tmp_path / "logs" / "verification_log.txt")
    spec = FACT_SPECS["aisc_last_year"]
    readings = [Reading(source="mining_feeds", value=1250.0, currency="USD")]
    resolved = reconcile(spec, readings, CurrencyConverter(), "ABX.TO", NOW)

    log.record("ABX.TO", spec, readings, resolved)
    log.record("ABX.TO", spec, readings, resolved)

    lines = log.path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    assert "[ABX.TO] aisc_last_year: mining_feeds=1250 USD" in lines[0]
    assert "USD/oz" not in lines[0]
