"""Unit tests for the price fetchers."""

from decimal import Decimal

import httpx
import pytest

from feeder.src.fetchers import (
    BaseFetcher,
    SourceConfigError,
    SourceError,
    SourceErrorKind,
    get_available_fetchers,
    get_fetcher,
    orderbook_midpoint,
)


class Router:
    """Scripted responses keyed by host and path."""

    def __init__(self) -> None:
        self.routes: dict[str, tuple[int, object]] = {}
        self.seen: list[httpx.Request] = []

    def __setitem__(self, key: str, value: tuple[int, object]) -> None:
        self.routes[key] = value

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.seen.append(request)
        status, body = self.routes.get(request.url.host + request.url.path, (404, "not found"))
        if isinstance(body, (dict, list)):
            return httpx.Response(status, json=body)
        return httpx.Response(status, text=body)


@pytest.fixture
def responder():
    """Route every fetcher request through a Router."""
    router = Router()
    BaseFetcher._shared_client = httpx.AsyncClient(transport=httpx.MockTransport(router))
    yield router
    BaseFetcher._shared_client = None


class TestRegistry:
    """Test fetcher registration and construction."""

    def test_available(self) -> None:
        available = get_available_fetchers()
        assert available == sorted(available)
        for name in ("binance", "bithumb", "coinone", "dunamu", "gdac", "imf_sdr", "kraken"):
            assert name in available

    def test_unknown_fetcher(self) -> None:
        with pytest.raises(ValueError, match="Unknown fetcher"):
            get_fetcher("nope")

    def test_api_key_required(self) -> None:
        with pytest.raises(SourceConfigError, match="API key required"):
            get_fetcher("alphavantage")
        assert get_fetcher("alphavantage", api_key="k").has_api_key

    def test_timeout(self) -> None:
        assert get_fetcher("kraken", timeout=2.5).timeout == 2.5
        assert get_fetcher("kraken").timeout == BaseFetcher.DEFAULT_TIMEOUT

    @pytest.mark.parametrize(
        "name, base, quote, supported",
        [
            ("binance", "luna", "usdt", True),
            ("binance", "luna", "krw", False),
            ("coinone", "luna", "krw", True),
            ("coinone", "luna", "usd", False),
            ("dunamu", "krw", "usd", True),
            ("dunamu", "usd", "eur", False),
        ],
    )
    def test_supports_pair(self, name, base, quote, supported) -> None:
        assert get_fetcher(name).supports_pair(base, quote) is supported


class TestOrderbookMidpoint:
    """Test the order book midpoint helper."""

    def test_midpoint(self) -> None:
        assert orderbook_midpoint(["102", "101"], ["99", "100"]) == Decimal("100.5")

    def test_empty_side(self) -> None:
        with pytest.raises(SourceError) as exc_info:
            orderbook_midpoint([], ["1"])
        assert exc_info.value.kind == SourceErrorKind.MALFORMED

    def test_bad_price(self) -> None:
        with pytest.raises(SourceError):
            orderbook_midpoint(["abc"], ["1"])


class TestFetchers:
    """Test fetchers against scripted responses."""

    @pytest.mark.asyncio
    async def test_binance(self, responder) -> None:
        responder["api.binance.com/api/v3/avgPrice"] = (
            200, {"mins": 5, "price": "85.12", "closeTime": 1700000000000}
        )
        raw = await get_fetcher("binance").fetch("luna", "usdt")

        assert raw.source == "binance"
        assert raw.price == "85.12"
        assert raw.timestamp == 1700000000000.0
        assert responder.seen[0].url.params["symbol"] == "LUNAUSDT"

    @pytest.mark.asyncio
    async def test_kraken_symbol_map(self, responder) -> None:
        responder["api.kraken.com/0/public/Ticker"] = (
            200, {"error": [], "result": {"XXBTZUSD": {"c": ["43000.1", "0.01"]}}}
        )
        raw = await get_fetcher("kraken").fetch("btc", "usd")

        assert raw.price == "43000.1"
        assert responder.seen[0].url.params["pair"] == "XBTUSD"

    @pytest.mark.asyncio
    async def test_kraken_rate_limit_error(self, responder) -> None:
        responder["api.kraken.com/0/public/Ticker"] = (
            200, {"error": ["EAPI:Rate limit exceeded"]}
        )
        with pytest.raises(SourceError) as exc_info:
            await get_fetcher("kraken").fetch("luna", "usd")
        assert exc_info.value.kind == SourceErrorKind.RATE_LIMITED

    @pytest.mark.asyncio
    async def test_coinone_midpoint(self, responder) -> None:
        responder["api.coinone.co.kr/orderbook"] = (
            200,
            {
                "result": "success",
                "timestamp": "1700000000",
                "ask": [{"price": "1810", "qty": "1"}, {"price": "1805", "qty": "2"}],
                "bid": [{"price": "1795", "qty": "1"}, {"price": "1790", "qty": "3"}],
            },
        )
        raw = await get_fetcher("coinone").fetch("luna", "krw")

        assert raw.price == Decimal("1800")
        assert raw.timestamp == 1700000000.0

    @pytest.mark.asyncio
    async def test_coinone_error_result(self, responder) -> None:
        responder["api.coinone.co.kr/orderbook"] = (200, {"result": "error", "errorCode": "107"})
        with pytest.raises(SourceError) as exc_info:
            await get_fetcher("coinone").fetch("luna", "krw")
        assert exc_info.value.kind == SourceErrorKind.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_dunamu(self, responder) -> None:
        responder["quotation-api-cdn.dunamu.com/v1/forex/recent"] = (
            200, [{"code": "FRX.KRWUSD", "basePrice": 1320.5, "timestamp": 1700000000000}]
        )
        raw = await get_fetcher("dunamu").fetch("krw", "usd")

        assert raw.price == 1320.5
        assert responder.seen[0].url.params["codes"] == "FRX.KRWUSD"

    @pytest.mark.asyncio
    async def test_alphavantage_throttled(self, responder) -> None:
        responder["www.alphavantage.co/query"] = (
            200, {"Note": "Thank you for using Alpha Vantage! Our standard API call frequency is 5 calls per minute."}
        )
        with pytest.raises(SourceError) as exc_info:
            await get_fetcher("alphavantage", api_key="k").fetch("krw", "sgd")
        assert exc_info.value.kind == SourceErrorKind.RATE_LIMITED

    @pytest.mark.asyncio
    async def test_alphavantage_refreshed_time(self, responder) -> None:
        responder["www.alphavantage.co/query"] = (
            200,
            {
                "Realtime Currency Exchange Rate": {
                    "5. Exchange Rate": "0.00102",
                    "6. Last Refreshed": "1970-01-01 00:01:40",
                    "7. Time Zone": "UTC",
                }
            },
        )
        raw = await get_fetcher("alphavantage", api_key="k").fetch("krw", "sgd")

        assert raw.price == "0.00102"
        assert raw.timestamp == 100.0

    @pytest.mark.asyncio
    async def test_http_429_is_rate_limited(self, responder) -> None:
        responder["api.binance.com/api/v3/avgPrice"] = (429, "Too many requests")
        with pytest.raises(SourceError) as exc_info:
            await get_fetcher("binance").fetch("luna", "usdt")
        assert exc_info.value.kind == SourceErrorKind.RATE_LIMITED

    @pytest.mark.asyncio
    async def test_http_500_is_unavailable(self, responder) -> None:
        responder["api.binance.com/api/v3/avgPrice"] = (500, "oops")
        with pytest.raises(SourceError) as exc_info:
            await get_fetcher("binance").fetch("luna", "usdt")
        assert exc_info.value.kind == SourceErrorKind.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_invalid_json_is_malformed(self, responder) -> None:
        responder["api.binance.com/api/v3/avgPrice"] = (200, "<html>")
        with pytest.raises(SourceError) as exc_info:
            await get_fetcher("binance").fetch("luna", "usdt")
        assert exc_info.value.kind == SourceErrorKind.MALFORMED

    @pytest.mark.asyncio
    async def test_missing_field_is_malformed(self, responder) -> None:
        responder["api.binance.com/api/v3/avgPrice"] = (200, {"code": -1121, "msg": "Invalid symbol."})
        with pytest.raises(SourceError) as exc_info:
            await get_fetcher("binance").fetch("luna", "usdt")
        assert exc_info.value.kind == SourceErrorKind.MALFORMED

    @pytest.mark.asyncio
    async def test_transport_error_is_unavailable(self) -> None:
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        BaseFetcher._shared_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        try:
            with pytest.raises(SourceError) as exc_info:
                await get_fetcher("binance").fetch("luna", "usdt")
            assert exc_info.value.kind == SourceErrorKind.UNAVAILABLE
        finally:
            BaseFetcher._shared_client = None


IMF_EXPORT = "\n".join(
    [
        "SDRs per Currency unit and Currency units per SDR (1)",
        "last five days",
        "",
        "SDRs per Currency unit (2)",
        "",
        "Currency\tJanuary 05, 2024\tJanuary 04, 2024\tJanuary 03, 2024",
        "Chinese yuan\t0.1047\t0.1046\t0.1045",
        "Korean won\t\t0.000574\t0.000575",
        "Euro\tNA\tNA\tNA",
        "",
        "Currency units per SDR(3)",
        "",
        "Currency\tJanuary 05, 2024\tJanuary 04, 2024\tJanuary 03, 2024",
        "Korean won\t1,742.16\t1,741.50\t1,739.00",
    ]
)


class TestKrwSources:
    """Test the GDAC and IMF SDR sources."""

    @pytest.mark.asyncio
    async def test_gdac_midpoint(self, responder) -> None:
        responder["partner.gdac.com/v0.4/public/orderbook"] = (
            200,
            {
                "ask": [{"price": "1810", "volume": "1"}, {"price": "1805", "volume": "2"}],
                "bid": [{"price": "1795", "volume": "1"}],
            },
        )
        raw = await get_fetcher("gdac").fetch("luna", "krw")

        assert raw.price == Decimal("1800")
        assert responder.seen[0].url.params["pair"] == "LUNA/KRW"

    @pytest.mark.asyncio
    async def test_gdac_error_status(self, responder) -> None:
        responder["partner.gdac.com/v0.4/public/orderbook"] = (
            404, {"code": "__unavailable__", "data": None}
        )
        with pytest.raises(SourceError) as exc_info:
            await get_fetcher("gdac").fetch("luna", "krw")
        assert exc_info.value.kind == SourceErrorKind.UNAVAILABLE

    def test_gdac_krw_only(self) -> None:
        assert get_fetcher("gdac").supports_pair("luna", "krw")
        assert not get_fetcher("gdac").supports_pair("luna", "usd")

    @pytest.mark.asyncio
    async def test_imf_sdr_most_recent_price(self, responder) -> None:
        """Blank days are skipped; the first matching row is SDRs per unit."""
        responder["www.imf.org/external/np/fin/data/rms_five.aspx"] = (200, IMF_EXPORT)
        raw = await get_fetcher("imf_sdr").fetch("krw", "sdr")

        assert raw.price == Decimal("0.000574")
        assert raw.timestamp is None
        assert responder.seen[0].url.params["tsvflag"] == "Y"

    @pytest.mark.asyncio
    async def test_imf_sdr_no_valuation(self, responder) -> None:
        responder["www.imf.org/external/np/fin/data/rms_five.aspx"] = (200, IMF_EXPORT)
        with pytest.raises(SourceError) as exc_info:
            await get_fetcher("imf_sdr").fetch("eur", "sdr")
        assert exc_info.value.kind == SourceErrorKind.MALFORMED

    @pytest.mark.asyncio
    async def test_imf_sdr_missing_currency(self, responder) -> None:
        responder["www.imf.org/external/np/fin/data/rms_five.aspx"] = (200, IMF_EXPORT)
        with pytest.raises(SourceError) as exc_info:
            await get_fetcher("imf_sdr").fetch("usd", "sdr")
        assert exc_info.value.kind == SourceErrorKind.MALFORMED

    def test_imf_sdr_pairs(self) -> None:
        fetcher = get_fetcher("imf_sdr")
        assert fetcher.supports_pair("krw", "sdr")
        assert not fetcher.supports_pair("krw", "usd")
        assert not fetcher.supports_pair("mnt", "sdr")
