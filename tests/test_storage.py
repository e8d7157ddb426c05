from datetime import datetime, timedelta, timezone
from pathlib import Path

import pandas as pd
import pytest

from mining_comps.errors import PersistenceFailure
from mining_comps.models import Company, ResolvedFact
from mining_comps.storage import JsonCompanyStore, SqliteCompanyStore, merge_facts

T0 = datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc)
T1 = T0 + timedelta(days=1)


def _fact(key, value, sources=("yahoo_finance",), flagged=False, when=T0):
    return ResolvedFact(
        key=key,
        value=value,
        currency="CAD",
        contributing_sources=list(sources),
        flagged=flagged,
        timestamp=when,
    )


def _empty(key, when=T1):
    return ResolvedFact(key=key, value=0.0, currency="CAD", timestamp=when)


def test_merge_facts_never_overwrites_with_no_data():
    existing = {"stock_price": _fact("stock_price", 5.0)}
    merged = merge_facts(existing, {"stock_price": _empty("stock_price"), "cash": _empty("cash")})
    assert merged["stock_price"].value == 5.0
    assert not merged["cash"].has_data

    merged = merge_facts(existing, {"stock_price": _fact("stock_price", 6.0, when=T1)})
    assert merged["stock_price"].value == 6.0


@pytest.fixture(params=["sqlite", "json"])
def store(request, tmp_path: Path):
    if request.param == "sqlite":
        return SqliteCompanyStore(tmp_path / "companies.db")
    return JsonCompanyStore(tmp_path / "companies")


def test_upsert_is_non_destructive(store, barrick):
    store.upsert(barrick, {"stock_price": _fact("stock_price", 25.3), "cash": _fact("cash", 4e9)}, now=T0)
    store.upsert(
        barrick,
        {"stock_price": _empty("stock_price"), "cash": _fact("cash", 4.2e9, flagged=True, when=T1)},
        now=T1,
    )

    record = store.get("abx.to")
    assert record is not None
    assert record.ticker == "ABX.TO"
    assert record.created_at == T0
    assert record.last_updated == T1
    assert record.facts["stock_price"].value == 25.3
    assert record.facts["stock_price"].contributing_sources == ["yahoo_finance"]
    assert record.facts["cash"].value == 4.2e9
    assert record.facts["cash"].flagged is True


def test_load_filters_and_limits(store, barrick):
    kinross = Company(ticker="K.TO", name="Kinross Gold")
    store.upsert(kinross, {"stock_price": _fact("stock_price", 12.0)}, now=T0)
    store.upsert(barrick, {"stock_price": _fact("stock_price", 25.0)}, now=T0)

    assert [r.ticker for r in store.load()] == ["ABX.TO", "K.TO"]
    assert [r.ticker for r in store.load(tickers=["k.to"])] == ["K.TO"]
    assert len(store.load(limit=1)) == 1
    assert store.get("NOPE.V") is None


def test_export_csv(store, barrick, tmp_path: Path):
    store.upsert(barrick, {"stock_price": _fact("stock_price", 25.0), "cash": _empty("cash")}, now=T0)
    out = tmp_path / "export" / "companies.csv"
    assert store.export_csv(out) == 1
    df = pd.read_csv(out)
    assert df.loc[0, "ticker"] == "ABX.TO"
    assert df.loc[0, "stock_price"] == 25.0
    assert pd.isna(df.loc[0, "cash"])


def test_export_csv_empty(store, tmp_path: Path):
    assert store.export_csv(tmp_path / "empty.csv") == 0


def test_sqlite_adds_missing_fact_columns(tmp_path: Path, barrick):
    path = tmp_path / "companies.db"
    SqliteCompanyStore(path, fact_keys=["stock_price"]).upsert(
        barrick, {"stock_price": _fact("stock_price", 25.0)}, now=T0
    )

    store = SqliteCompanyStore(path)
    store.upsert(barrick, {"aisc_last_year": _fact("aisc_last_year", 1250.0)}, now=T1)
    record = store.get("ABX.TO")
    assert record.facts["stock_price"].value == 25.0
    assert record.facts["aisc_last_year"].value == 1250.0


def test_json_write_failure_raises_persistence_failure(tmp_path: Path, barrick):
    store = JsonCompanyStore(tmp_path)
    # A directory squatting on the document path makes the final rename fail.
    (tmp_path / "ABX.TO.json").mkdir()
    with pytest.raises(PersistenceFailure) as excinfo:
        store.upsert(barrick, {"stock_price": _fact("stock_price", 25.0)}, now=T0)
    assert excinfo.value.ticker == "ABX.TO"


def test_urls_round_trip_and_overlay(store, barrick):
    assert store.get_urls("ABX.TO") == {}

    store.save_urls("abx.to", {"homepage": "https://www.barrick.com", "jmn": None}, now=T0)
    store.save_urls("ABX.TO", {"tradingview": "https://www.tradingview.com/symbols/TSX-ABX/"}, now=T1)

    urls = store.get_urls("ABX.TO")
    assert set(urls) == {"homepage", "tradingview"}
    assert urls["homepage"].url == "https://www.barrick.com"
    assert urls["homepage"].last_checked == T0
    assert urls["tradingview"].last_checked == T1

    store.save_urls("ABX.TO", {"homepage": "https://barrick.com/en"}, now=T1)
    assert store.get_urls("ABX.TO")["homepage"].url == "https://barrick.com/en"


def test_url_documents_stay_out_of_company_listing(tmp_path: Path, barrick):
    store = JsonCompanyStore(tmp_path / "companies")
    store.save_urls("ABX.TO", {"homepage": "https://www.barrick.com"}, now=T0)
    assert store.load() == []
