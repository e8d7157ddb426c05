import asyncio

import httpx
import pytest

from mining_comps.cache import TTLCache
from mining_comps.currency import CurrencyConverter, fetch_rates_to_cad, home_currency, load_converter


def test_home_currency_from_suffix():
    assert home_currency("ABX.TO") == "CAD"
    assert home_currency("lug.v") == "CAD"
    assert home_currency("NST.AX") == "AUD"
    assert home_currency("POG.L") == "GBP"
    assert home_currency("GOLD") == "USD"
    assert home_currency("") == "USD"


def test_convert_identity_and_unknown():
    conv = CurrencyConverter({"USD": 1.35})
    assert conv.convert(10.0, "CAD", "CAD") == 10.0
    assert conv.convert(10.0, "usd", "USD") == 10.0
    assert conv.convert(10.0, "ZAR", "CAD") is None
    assert conv.convert(10.0, None, "CAD") is None
    assert conv.convert(10.0, None, None) == 10.0
    assert conv.convert(10.0, "USD", "CAD") == pytest.approx(13.5)
    assert conv.convert(13.5, "CAD", "USD") == pytest.approx(10.0)


def test_convert_round_trip():
    conv = CurrencyConverter({"USD": 1.37, "AUD": 0.91, "GBP": 1.74})
    for a, b in [("USD", "AUD"), ("GBP", "CAD"), ("AUD", "GBP")]:
        assert conv.convert(conv.convert(1234.5, a, b), b, a) == pytest.approx(1234.5)


def test_converter_ignores_bad_rates():
    conv = CurrencyConverter({"USD": 0, "AUD": -1.0, "GBP": 1.7})
    assert conv.rate("USD", "CAD") is None
    assert conv.rate("AUD", "CAD") is None
    assert conv.rate("CAD", "CAD") == 1.0


def _transport(calls):
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.params["from"])
        if request.url.params["from"] == "USD":
            return httpx.Response(200, json={"result": 1.4})
        return httpx.Response(503)

    return httpx.MockTransport(handler)


def test_fetch_rates_keeps_fallback_on_failure():
    calls = []

    async def run():
        async with httpx.AsyncClient(transport=_transport(calls)) as client:
            return await fetch_rates_to_cad(
                client, ["USD", "AUD", "CAD"], {"CAD": 1.0, "USD": 1.35, "AUD": 0.9}, max_attempts=1, base_delay=0
            )

    rates = asyncio.run(run())
    assert rates == {"CAD": 1.0, "USD": 1.4, "AUD": 0.9}
    assert sorted(calls) == ["AUD", "USD"]


def test_load_converter_uses_cache():
    calls = []
    cache = TTLCache(3600)

    async def run():
        async with httpx.AsyncClient(transport=_transport(calls)) as client:
            first = await load_converter(client, cache, {"USD": 1.35}, max_attempts=1, base_delay=0)
            second = await load_converter(client, cache, {"USD": 1.35}, max_attempts=1, base_delay=0)
            return first, second

    first, second = asyncio.run(run())
    assert first.rate("USD", "CAD") == pytest.approx(1.4)
    assert second.rate("USD", "CAD") == pytest.approx(1.4)
    assert calls == ["USD"]
