import asyncio

import pytest

from mining_comps.config import Settings
from mining_comps.errors import SourceUnavailable
from mining_comps.ingestion.sources import (
    AlphaVantageSource,
    FinancialModelingPrepSource,
    _check_alpha_payload,
    alpha_vantage_symbol,
    default_sources,
    fmp_symbol,
    parse_alpha_vantage,
    parse_fmp,
    parse_yahoo_info,
)

YAHOO_INFO = {
    "shortName": "Barrick Gold Corporation",
    "symbol": "ABX.TO",
    "currency": "CAD",
    "financialCurrency": "USD",
    "regularMarketPrice": 25.3,
    "marketCap": 44_000_000_000,
    "sharesOutstanding": 1_750_000_000,
    "totalCash": 4_000_000_000,
    "totalDebt": 4_700_000_000,
    "totalRevenue": None,
}


def test_parse_yahoo_info(barrick):
    report = parse_yahoo_info(YAHOO_INFO, barrick)
    assert report["stock_price"].value == 25.3
    assert report["stock_price"].currency == "CAD"
    assert report["cash"].currency == "USD"
    assert report["number_of_shares"].currency is None
    assert "revenue" not in report
    assert "enterprise_value" not in report


def test_parse_yahoo_info_price_fallback(barrick):
    info = dict(YAHOO_INFO, regularMarketPrice=None, currentPrice=25.1)
    assert parse_yahoo_info(info, barrick)["stock_price"].value == 25.1


def test_parse_yahoo_info_rejects_other_companies(barrick):
    with pytest.raises(SourceUnavailable):
        parse_yahoo_info({}, barrick)
    with pytest.raises(SourceUnavailable):
        parse_yahoo_info(dict(YAHOO_INFO, shortName="Kinross Gold Corp", symbol="K.TO"), barrick)
    # Odd name but the right symbol is still usable.
    report = parse_yahoo_info(dict(YAHOO_INFO, shortName="ABX CDA"), barrick)
    assert report["market_cap"].value == 44e9


def test_alpha_vantage_symbol():
    assert alpha_vantage_symbol("ABX.TO") == "ABX.TRT"
    assert alpha_vantage_symbol("lug.v") == "LUG.TRV"
    assert alpha_vantage_symbol("GOLD") == "GOLD"


def test_parse_alpha_vantage():
    report = parse_alpha_vantage(
        {"Global Quote": {"05. price": "12.50"}},
        {"annualReports": [{"reportedCurrency": "CAD", "cashAndCashEquivalentsAtCarryingValue": "1000", "longTermDebt": "None"}]},
        None,
    )
    assert report["stock_price"].value == 12.5
    assert report["stock_price"].currency is None
    assert report["cash"].currency == "CAD"
    assert "debt" not in report
    assert "revenue" not in report


def test_check_alpha_payload():
    assert _check_alpha_payload({"Global Quote": {}}) == {"Global Quote": {}}
    with pytest.raises(ValueError):
        _check_alpha_payload({"Note": "Thank you for using Alpha Vantage! Our standard API rate limit is 25 requests per day."})
    with pytest.raises(ValueError):
        _check_alpha_payload([])


def test_parse_fmp():
    report = parse_fmp(
        [{"price": 25.3, "mktCap": 44e9, "currency": "CAD"}],
        [{"revenue": 11e9, "netIncome": 1.2e9, "reportedCurrency": "USD"}],
        [],
    )
    assert report["market_cap"].currency == "CAD"
    assert report["revenue"].value == 11e9
    assert "cash" not in report
    assert fmp_symbol("ABX.TO") == "ABX"


def test_keyed_sources_skip_without_key(barrick):
    assert asyncio.run(AlphaVantageSource(None).fetch(None, barrick)) == {}
    assert asyncio.run(FinancialModelingPrepSource("").fetch(None, barrick)) == {}


def test_default_sources_follow_settings():
    settings = Settings(sources_raw="yahoo_finance, bogus,MINING_FEEDS,company_overview", manual_entry=False)
    assert [s.name for s in default_sources(settings)] == ["yahoo_finance", "mining_feeds", "company_overview"]

    settings = Settings(sources_raw="tradingview", manual_entry=True)
    assert [s.name for s in default_sources(settings)] == ["tradingview", "manual"]
