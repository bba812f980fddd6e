"""Historical and live USD price feeds.

Two interchangeable :class:`PriceSource` variants sit on top of the raw
feeds: :class:`HistoricalPriceSource` answers from a per-mint CoinGecko
series, :class:`LivePriceSource` from a current Jupiter quote. Both are
prepared up front for a set of mints (fetches fan out over a thread pool)
and then answer ``price_at`` lookups without further I/O.
"""

from __future__ import annotations

import json
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple

import requests
from cachetools import TTLCache

from ..config.settings import DataSourceConfig, get_app_config
from ..exceptions import FetchError, MirrorError, ParseError, RateLimitedError
from ..monitoring.logger import get_logger, map_in_context
from ..monitoring.metrics import METRICS
from ..utils.constants import SOL_DECIMALS, SOL_MINT, USDC_DECIMALS, USDC_MINT
from .rpc_client import SolanaRpcClient

BUNDLED_IDS_PATH = Path(__file__).with_name("data") / "coingecko_ids.json"

PricePoint = Tuple[int, float]


class HistoricalPriceFeed(Protocol):
    def historical_price_series(self, mint: str, start: int, end: int) -> List[PricePoint]:
        ...


class LiveQuoteSource(Protocol):
    def live_quote(self, mint: str, decimals: Optional[int] = None) -> Optional[float]:
        ...


def _get_json(
    session: requests.Session,
    url: str,
    params: Mapping[str, Any],
    timeout: float,
) -> Any:
    try:
        response = session.get(url, params=dict(params), headers={"Accept": "application/json"}, timeout=timeout)
    except requests.RequestException as exc:
        raise FetchError(f"GET {url} failed: {exc}") from exc
    if response.status_code == 429:
        raise RateLimitedError(f"{url} rate limited the request")
    try:
        response.raise_for_status()
    except requests.HTTPError as exc:
        raise FetchError(f"GET {url} returned HTTP {response.status_code}") from exc
    try:
        return response.json()
    except ValueError as exc:
        raise ParseError(f"GET {url} returned a non-JSON body") from exc


class CoinGeckoIdRegistry:
    """Mint address to CoinGecko coin id lookup backed by a JSON file.

    The file maps each mint to ``{"id": ..., "name": ..., "symbol": ...}``.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = Path(path) if path else BUNDLED_IDS_PATH
        self._entries: Optional[Dict[str, Dict[str, str]]] = None
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, Dict[str, str]]:
        with self._lock:
            if self._entries is None:
                try:
                    with self._path.open("r", encoding="utf-8") as handle:
                        data = json.load(handle)
                except OSError as exc:
                    raise ParseError(f"Cannot read CoinGecko id map {self._path}: {exc}") from exc
                except ValueError as exc:
                    raise ParseError(f"CoinGecko id map {self._path} is not valid JSON") from exc
                if not isinstance(data, dict):
                    raise ParseError(f"CoinGecko id map {self._path} is not an object")
                self._entries = {str(mint): entry for mint, entry in data.items() if isinstance(entry, dict)}
            return self._entries

    def get_id(self, mint: str) -> Optional[str]:
        entry = self._load().get(mint)
        return str(entry["id"]) if entry and entry.get("id") else None

    def __contains__(self, mint: object) -> bool:
        return mint in self._load()


class CoinGeckoClient:
    """Historical USD series from CoinGecko's ``market_chart/range`` endpoint."""

    def __init__(
        self,
        config: Optional[DataSourceConfig] = None,
        session: Optional[requests.Session] = None,
        registry: Optional[CoinGeckoIdRegistry] = None,
    ) -> None:
        self._config = config or get_app_config().data_sources
        self._session = session or requests.Session()
        self._registry = registry or CoinGeckoIdRegistry(self._config.coingecko_ids_path)
        self._base_url = str(self._config.coingecko_base_url).rstrip("/")
        self._logger = get_logger(__name__)

    @property
    def registry(self) -> CoinGeckoIdRegistry:
        return self._registry

    def get_coin_market_chart(
        self,
        coin_id: str,
        start: int,
        end: int,
        vs_currency: str = "usd",
    ) -> List[PricePoint]:
        params: Dict[str, Any] = {"vs_currency": vs_currency, "from": int(start), "to": int(end)}
        if self._config.coingecko_api_key:
            params["x_cg_demo_api_key"] = self._config.coingecko_api_key
        payload = _get_json(
            self._session,
            f"{self._base_url}/coins/{coin_id}/market_chart/range",
            params,
            self._config.http_timeout,
        )
        prices = payload.get("prices") if isinstance(payload, dict) else None
        if not isinstance(prices, list):
            return []
        points: List[PricePoint] = []
        for entry in prices:
            try:
                points.append((int(entry[0]), float(entry[1])))
            except (IndexError, TypeError, ValueError):
                continue
        return points

    def historical_price_series(self, mint: str, start: int, end: int) -> List[PricePoint]:
        coin_id = self._registry.get_id(mint)
        if coin_id is None:
            self._logger.debug("No CoinGecko id for %s; skipping historical prices", mint)
            return []
        return self.get_coin_market_chart(coin_id, start, end)


class JupiterQuoteClient:
    """Current USD price of a mint from a Jupiter swap quote into USDC."""

    def __init__(
        self,
        rpc_client: Optional[SolanaRpcClient] = None,
        config: Optional[DataSourceConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._config = config or get_app_config().data_sources
        self._session = session or requests.Session()
        self._rpc = rpc_client
        self._quote_url = f"{str(self._config.jupiter_quote_url).rstrip('/')}/quote"
        self._cache: TTLCache[str, float] = TTLCache(maxsize=512, ttl=self._config.cache_ttl_seconds)
        self._decimals: Dict[str, int] = {SOL_MINT: SOL_DECIMALS, USDC_MINT: USDC_DECIMALS}
        self._lock = threading.Lock()
        self._logger = get_logger(__name__)

    def _resolve_decimals(self, mint: str, decimals: Optional[int]) -> int:
        if decimals is not None:
            return int(decimals)
        with self._lock:
            known = self._decimals.get(mint)
        if known is not None:
            return known
        if self._rpc is None:
            raise FetchError(f"Decimals for {mint} unknown and no RPC client configured")
        resolved = self._rpc.get_token_decimals(mint)
        with self._lock:
            self._decimals[mint] = resolved
        return resolved

    def quote(self, mint: str, decimals: Optional[int] = None) -> float:
        """Return the USDC out-amount for one whole unit of ``mint``.

        Raises on transport or payload errors; :meth:`live_quote` is the
        forgiving variant.
        """

        if mint == USDC_MINT:
            return 1.0
        with self._lock:
            cached = self._cache.get(mint)
        if cached is not None:
            return cached
        amount = 10 ** self._resolve_decimals(mint, decimals)
        payload = _get_json(
            self._session,
            self._quote_url,
            {"inputMint": mint, "outputMint": USDC_MINT, "amount": amount},
            self._config.http_timeout,
        )
        try:
            price = int(payload["outAmount"]) / 10**USDC_DECIMALS
        except (KeyError, TypeError, ValueError) as exc:
            raise ParseError(f"Jupiter quote for {mint} has no outAmount") from exc
        with self._lock:
            self._cache[mint] = price
        return price

    def live_quote(self, mint: str, decimals: Optional[int] = None) -> Optional[float]:
        try:
            return self.quote(mint, decimals)
        except MirrorError as exc:
            METRICS.increment("pricing.live_failures")
            self._logger.warning("Live quote for %s failed: %s", mint, exc)
            return None


class PriceSource(ABC):
    """Per-mint USD prices for a set of bucket timestamps."""

    def __init__(self, max_workers: int = 4) -> None:
        self._max_workers = max(1, int(max_workers))
        self._logger = get_logger(__name__)

    def _fan_out(self, fetch, mints: List[str]) -> List[Any]:
        if self._max_workers > 1 and len(mints) > 1:
            with ThreadPoolExecutor(max_workers=min(self._max_workers, len(mints))) as executor:
                return map_in_context(executor, fetch, mints)
        return [fetch(mint) for mint in mints]

    @abstractmethod
    def prepare(self, mints: Iterable[str], start: int, end: int) -> None:
        """Fetch whatever is needed to answer ``price_at`` for ``mints``."""

    @abstractmethod
    def price_at(self, mint: str, timestamp: int) -> Optional[float]:
        """USD price of ``mint`` at ``timestamp``, or None when unknown."""


class HistoricalPriceSource(PriceSource):
    """Looks prices up in one series per mint spaced ``time_step`` seconds apart."""

    def __init__(self, feed: HistoricalPriceFeed, time_step: int, max_workers: int = 4) -> None:
        super().__init__(max_workers)
        self._feed = feed
        self._time_step = int(time_step)
        self._start = 0
        self._series: Dict[str, List[PricePoint]] = {}

    @property
    def time_step(self) -> int:
        return self._time_step

    def _fetch(self, mint: str, start: int, end: int) -> List[PricePoint]:
        try:
            return list(self._feed.historical_price_series(mint, start, end))
        except MirrorError as exc:
            METRICS.increment("pricing.historical_failures")
            self._logger.warning("Historical prices for %s unavailable: %s", mint, exc)
            return []

    def prepare(self, mints: Iterable[str], start: int, end: int) -> None:
        self._start = int(start)
        pending = [mint for mint in dict.fromkeys(mints) if mint not in self._series]
        results = self._fan_out(lambda mint: self._fetch(mint, start, end), pending)
        self._series.update(zip(pending, results))

    def price_at(self, mint: str, timestamp: int) -> Optional[float]:
        series = self._series.get(mint)
        if not series:
            return None
        index = (int(timestamp) - self._start) // self._time_step
        if index < 0 or index >= len(series):
            return None
        return series[index][1]


class LivePriceSource(PriceSource):
    """Answers every timestamp with the mint's current quote."""

    def __init__(self, quote: LiveQuoteSource, max_workers: int = 4) -> None:
        super().__init__(max_workers)
        self._quote = quote
        self._prices: Dict[str, Optional[float]] = {}

    def _fetch(self, mint: str) -> Optional[float]:
        try:
            return self._quote.live_quote(mint)
        except MirrorError as exc:
            METRICS.increment("pricing.live_failures")
            self._logger.warning("Live quote for %s failed: %s", mint, exc)
            return None

    def prepare(self, mints: Iterable[str], start: int = 0, end: int = 0) -> None:
        pending = [mint for mint in dict.fromkeys(mints) if mint not in self._prices]
        self._prices.update(zip(pending, self._fan_out(self._fetch, pending)))

    def price_at(self, mint: str, timestamp: int) -> Optional[float]:
        return self._prices.get(mint)


__all__ = [
    "CoinGeckoClient",
    "CoinGeckoIdRegistry",
    "HistoricalPriceFeed",
    "HistoricalPriceSource",
    "JupiterQuoteClient",
    "LivePriceSource",
    "LiveQuoteSource",
    "PricePoint",
    "PriceSource",
]
