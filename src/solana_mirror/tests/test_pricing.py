"""Tests for the CoinGecko and Jupiter price clients."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List

import pytest
import requests

from solana_mirror.config import settings
from solana_mirror.ingestion.pricing import CoinGeckoClient, CoinGeckoIdRegistry, JupiterQuoteClient
from solana_mirror.monitoring.metrics import METRICS
from solana_mirror.utils.constants import SOL_MINT, USDC_MINT

BONK_MINT = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"


class FakeResponse:
    def __init__(self, payload: Any, status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def json(self) -> Any:
        return self._payload


class FakeSession:
    def __init__(self, payload: Any = None, status_code: int = 200, error: Exception | None = None) -> None:
        self.payload = payload
        self.status_code = status_code
        self.error = error
        self.requests: List[Dict[str, Any]] = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.requests.append({"url": url, "params": dict(params or {})})
        if self.error is not None:
            raise self.error
        return FakeResponse(self.payload, self.status_code)


class FakeRpc:
    def __init__(self, decimals: int) -> None:
        self.decimals = decimals
        self.calls: List[str] = []

    def get_token_decimals(self, mint: str) -> int:
        self.calls.append(mint)
        return self.decimals


@pytest.fixture()
def registry(tmp_path: Path) -> CoinGeckoIdRegistry:
    path = tmp_path / "ids.json"
    path.write_text(json.dumps({SOL_MINT: {"id": "wrapped-solana", "name": "Wrapped SOL", "symbol": "sol"}}))
    return CoinGeckoIdRegistry(path)


def test_market_chart_request_shape(registry: CoinGeckoIdRegistry) -> None:
    config = settings.DataSourceConfig(coingecko_api_key="demo", http_timeout=1)
    session = FakeSession({"prices": [[1_700_000_000_000, 101.5], [1_700_003_600_000, 102.0]]})
    client = CoinGeckoClient(config=config, session=session, registry=registry)

    series = client.historical_price_series(SOL_MINT, 1_700_000_000, 1_700_003_600)

    assert series == [(1_700_000_000_000, 101.5), (1_700_003_600_000, 102.0)]
    request = session.requests[0]
    assert request["url"].endswith("/coins/wrapped-solana/market_chart/range")
    assert request["params"] == {
        "vs_currency": "usd",
        "from": 1_700_000_000,
        "to": 1_700_003_600,
        "x_cg_demo_api_key": "demo",
    }


def test_unknown_mint_skips_the_request(registry: CoinGeckoIdRegistry) -> None:
    session = FakeSession({"prices": []})
    client = CoinGeckoClient(config=settings.DataSourceConfig(), session=session, registry=registry)

    assert client.historical_price_series(BONK_MINT, 0, 10) == []
    assert session.requests == []


def test_bundled_registry_knows_common_mints() -> None:
    registry = CoinGeckoIdRegistry()
    assert registry.get_id(SOL_MINT) == "wrapped-solana"
    assert registry.get_id(USDC_MINT) == "usd-coin"
    assert registry.get_id("11111111111111111111111111111111") is None


def test_usdc_quotes_at_one_without_a_request() -> None:
    session = FakeSession()
    client = JupiterQuoteClient(config=settings.DataSourceConfig(), session=session)

    assert client.live_quote(USDC_MINT) == 1.0
    assert session.requests == []


def test_quote_uses_one_whole_unit_and_caches() -> None:
    session = FakeSession({"inAmount": "1000000000", "outAmount": "151250000"})
    client = JupiterQuoteClient(config=settings.DataSourceConfig(cache_ttl_seconds=60), session=session)

    assert client.live_quote(SOL_MINT) == pytest.approx(151.25)
    assert client.live_quote(SOL_MINT) == pytest.approx(151.25)

    assert len(session.requests) == 1
    assert session.requests[0]["url"].endswith("/quote")
    assert session.requests[0]["params"] == {"inputMint": SOL_MINT, "outputMint": USDC_MINT, "amount": 10**9}


def test_quote_resolves_unknown_decimals_over_rpc() -> None:
    rpc = FakeRpc(decimals=5)
    session = FakeSession({"outAmount": "25"})
    client = JupiterQuoteClient(rpc, config=settings.DataSourceConfig(), session=session)

    assert client.live_quote(BONK_MINT) == pytest.approx(0.000025)
    assert rpc.calls == [BONK_MINT]
    assert session.requests[0]["params"]["amount"] == 10**5


def test_quote_failures_return_none_and_are_counted() -> None:
    METRICS.reset()
    session = FakeSession(error=requests.ConnectionError("down"))
    client = JupiterQuoteClient(config=settings.DataSourceConfig(), session=session)

    assert client.live_quote(SOL_MINT) is None
    assert METRICS.get("pricing.live_failures") == 1


def test_quote_without_out_amount_is_a_failure() -> None:
    client = JupiterQuoteClient(config=settings.DataSourceConfig(), session=FakeSession({"error": "no route"}))
    assert client.live_quote(SOL_MINT, 9) is None
