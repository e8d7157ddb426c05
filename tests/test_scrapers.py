import asyncio

import httpx
import pytest

from mining_comps.errors import SourceUnavailable
from mining_comps.ingestion.scrapers import (
    CompanyOverviewSource,
    JuniorMiningNetworkSource,
    MiningFeedsSource,
    TradingViewSource,
    check_name,
    mining_feeds_url,
    parse_jmn_table,
    parse_mining_feeds,
    parse_overview_text,
    parse_tradingview,
    tradingview_url,
)
from mining_comps.models import Company

TRADINGVIEW_HTML = """
<html><body>
  <div class="tv-symbol-header__title">Barrick Gold Corp</div>
  <span class="js-symbol-last">25.31</span>
  <span class="js-symbol-market-cap">44.2B</span>
</body></html>
"""

MINING_FEEDS_HTML = """
<html><body>
  <ul class="company-breadcrumbs"><li class="active"><a>Barrick Gold Corp</a></li></ul>
  <div class="stock-data"><span class="price">$25.31</span><span class="market-cap">44.2B</span></div>
  <div class="mining-data">
    <span class="reserves-gold">1.2</span>
    <span class="reserves-silver">80</span>
    <span class="resources-silver">160 Moz</span>
    <span class="production">150.5</span>
    <span class="aisc">$1,250</span>
  </div>
</body></html>
"""

JMN_HTML = """
<table class="stock-table"><tbody>
  <tr><td class="ticker">K</td><td class="company">Kinross Gold</td>
      <td class="last-trade">12.01</td><td class="market-cap">14.7B</td></tr>
  <tr><td class="ticker">ABX</td><td class="company">Barrick Gold Corporation</td>
      <td class="last-trade">25.30</td><td class="market-cap">44.1B</td></tr>
</tbody></table>
"""


def _client(pages, status=200):
    def handler(request: httpx.Request) -> httpx.Response:
        body = pages.get(str(request.url))
        if body is None:
            return httpx.Response(404)
        return httpx.Response(status, text=body)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _fetch(source, company, pages):
    async def run():
        async with _client(pages) as client:
            return await source.fetch(client, company)

    return asyncio.run(run())


def test_urls(barrick):
    assert tradingview_url("ABX.TO") == "https://www.tradingview.com/symbols/TSX-ABX/"
    assert tradingview_url("lug.v") == "https://www.tradingview.com/symbols/TSXV-LUG/"
    assert mining_feeds_url(barrick) == "https://www.miningfeeds.com/stock/barrick-gold-tsx/"


def test_parse_tradingview():
    name, price, market_cap = parse_tradingview(TRADINGVIEW_HTML)
    assert name == "Barrick Gold Corp"
    assert price == pytest.approx(25.31)
    assert market_cap == pytest.approx(44.2e9)
    assert parse_tradingview("<html></html>") == (None, None, None)


def test_parse_mining_feeds_folds_silver_into_gold_equivalent():
    name, facts = parse_mining_feeds(MINING_FEEDS_HTML)
    assert name == "Barrick Gold Corp"
    assert facts["stock_price"] == pytest.approx(25.31)
    assert facts["reserves_au_moz"] == pytest.approx(2.2)
    assert facts["resources_au_moz"] == pytest.approx(2.0)
    assert facts["production_total_au_eq_koz"] == pytest.approx(150.5)
    assert facts["aisc_last_year"] == pytest.approx(1250.0)

    _, facts = parse_mining_feeds(MINING_FEEDS_HTML, ratio=40)
    assert facts["resources_au_moz"] == pytest.approx(4.0)


def test_parse_jmn_table(barrick):
    name, price, market_cap = parse_jmn_table(JMN_HTML, barrick)
    assert name == "Barrick Gold Corporation"
    assert price == pytest.approx(25.30)
    assert market_cap == pytest.approx(44.1e9)
    assert parse_jmn_table(JMN_HTML, Company(ticker="EQX.TO", name="Equinox Gold")) is None


def test_parse_overview_text():
    assert parse_overview_text("Measured & Indicated Mineral Resources of 3.4 Moz AuEq") == pytest.approx(3.4)
    assert parse_overview_text("Silver resources total 160 Moz across the district") == pytest.approx(2.0)
    assert parse_overview_text("We explore for copper.") is None
    assert parse_overview_text("") is None


def test_check_name(barrick):
    check_name("tradingview", barrick, "Barrick Gold Corp", "https://x/TSX-ABX/", "ABX")
    check_name("tradingview", barrick, None, "https://x/", "ABX")
    # Wrong name tolerated while the URL still points at the requested symbol.
    check_name("tradingview", barrick, "Something Else", "https://x/TSX-ABX/", "ABX")
    with pytest.raises(SourceUnavailable):
        check_name("tradingview", barrick, "Something Else", "https://x/TSX-KGC/", "ABX")


def test_tradingview_source(barrick):
    report = _fetch(TradingViewSource(1, 0), barrick, {tradingview_url("ABX.TO"): TRADINGVIEW_HTML})
    assert report["stock_price"].value == pytest.approx(25.31)
    assert report["stock_price"].currency is None
    assert report["market_cap"].source == "tradingview"


def test_tradingview_source_failures(barrick):
    with pytest.raises(SourceUnavailable):
        _fetch(TradingViewSource(1, 0), barrick, {})
    with pytest.raises(SourceUnavailable):
        _fetch(TradingViewSource(1, 0), barrick, {tradingview_url("ABX.TO"): "<html></html>"})


def test_mining_feeds_source(barrick):
    report = _fetch(MiningFeedsSource(1, 0), barrick, {mining_feeds_url(barrick): MINING_FEEDS_HTML})
    assert report["aisc_last_year"].currency == "USD"
    assert report["reserves_au_moz"].value == pytest.approx(2.2)
    assert report["reserves_au_moz"].currency is None


def test_junior_mining_network_source(barrick):
    pages = ["https://jmn.test/gold.html", "https://jmn.test/silver.html"]
    source = JuniorMiningNetworkSource(1, 0, pages=pages)
    report = _fetch(source, barrick, {pages[1]: JMN_HTML})
    assert report["stock_price"].value == pytest.approx(25.30)

    assert _fetch(source, Company(ticker="EQX.TO", name="Equinox Gold"), {pages[0]: JMN_HTML}) == {}
    with pytest.raises(SourceUnavailable):
        _fetch(source, barrick, {})


def test_company_overview_source(barrick):
    assert _fetch(CompanyOverviewSource(1, 0), barrick, {}) == {}

    company = barrick.model_copy(update={"website": "https://barrick.test/"})
    pages = {"https://barrick.test/company/overview/": "<p>Indicated mineral resources: 12.5 Moz AuEq</p>"}
    report = _fetch(CompanyOverviewSource(1, 0), company, pages)
    assert report["resources_au_moz"].value == pytest.approx(12.5)


def test_scrapers_prefer_stored_urls(barrick):
    company = barrick.model_copy(
        update={
            "urls": {
                "tradingview": "https://tv.test/abx/",
                "mining_feeds": "https://mf.test/barrick-gold-corp-tsx/",
                "homepage": "https://barrick.test",
            }
        }
    )
    report = _fetch(TradingViewSource(1, 0), company, {"https://tv.test/abx/": TRADINGVIEW_HTML})
    assert report["market_cap"].value == pytest.approx(44.2e9)

    report = _fetch(MiningFeedsSource(1, 0), company, {"https://mf.test/barrick-gold-corp-tsx/": MINING_FEEDS_HTML})
    assert report["reserves_au_moz"].value == pytest.approx(2.2)

    pages = {"https://barrick.test/about-us/": "<p>Indicated mineral resources: 12.5 Moz AuEq</p>"}
    assert _fetch(CompanyOverviewSource(1, 0), company, pages)["resources_au_moz"].value == pytest.approx(12.5)
