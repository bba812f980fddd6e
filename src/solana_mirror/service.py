"""Public entry points: balance history, current balances, positions, transactions."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Union

from .analytics.chart import build_chart_states, parse_timeframe
from .analytics.pricing import align_prices
from .config.settings import AppConfig, get_app_config
from .dapps.raydium import get_parsed_position, get_position_address
from .datalake.schemas import MinimalChartPoint, ParsedAccount, ParsedPosition, PricedBucket, WalletBalances
from .exceptions import AccountNotFoundError
from .ingestion.accounts import get_parsed_accounts, partition_position_nfts
from .ingestion.metadata import MetadataCache, MetaplexMetadataResolver
from .ingestion.pricing import CoinGeckoClient, HistoricalPriceFeed, JupiterQuoteClient, LiveQuoteSource
from .ingestion.rpc_client import SolanaRpcClient
from .ingestion.transactions import TransactionHistory, fetch_parsed_transactions, parse_page
from .monitoring.logger import correlation_scope, get_logger, map_in_context
from .utils.constants import unix_now
from .utils.pubkeys import validate_address

logger = get_logger(__name__)

ChartPoint = Union[PricedBucket, MinimalChartPoint]


class WalletService:
    """Wires the RPC client, price feeds and metadata cache into request handlers.

    Every public method runs inside its own correlation scope and either
    returns the result types from :mod:`solana_mirror.datalake.schemas` or
    raises a :class:`~solana_mirror.exceptions.MirrorError`.
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        rpc_client: Optional[SolanaRpcClient] = None,
        historical_feed: Optional[HistoricalPriceFeed] = None,
        live_quote: Optional[LiveQuoteSource] = None,
        metadata: Optional[MetadataCache] = None,
        clock: Callable[[], int] = unix_now,
    ) -> None:
        self._config = config or get_app_config()
        self._rpc = rpc_client or SolanaRpcClient(self._config.rpc)
        self._coingecko = CoinGeckoClient(self._config.data_sources)
        self._historical = historical_feed or self._coingecko
        self._quote = live_quote or JupiterQuoteClient(self._rpc, self._config.data_sources)
        self._metadata = metadata or MetadataCache(MetaplexMetadataResolver(self._rpc, self._config.data_sources))
        self._clock = clock

    @property
    def metadata(self) -> MetadataCache:
        return self._metadata

    def get_chart(
        self,
        address: str,
        timeframe: str = "30d",
        detailed: bool = False,
        now: Optional[int] = None,
    ) -> List[ChartPoint]:
        """USD balance history of ``address`` bucketed by ``timeframe`` (e.g. ``"30d"``, ``"12h"``)."""

        with correlation_scope():
            unit, requested_range = parse_timeframe(timeframe, self._config.chart)
            owner = validate_address(address)
            history = fetch_parsed_transactions(self._rpc, owner)
            current = self._clock() if now is None else int(now)
            states = build_chart_states(history.transactions, unit, requested_range, current)
            buckets = align_prices(
                states,
                self._historical,
                self._quote,
                daily_threshold_days=self._config.chart.daily_granularity_threshold_days,
                max_workers=self._config.data_sources.price_concurrency,
            )
            logger.info("Built %d chart buckets for %s over %s", len(buckets), owner, timeframe)
            if detailed:
                return list(buckets)
            return [bucket.to_minimal() for bucket in buckets]

    def _accounts(self, address: str) -> List[ParsedAccount]:
        return get_parsed_accounts(
            self._rpc,
            address,
            self._quote,
            registry=self._coingecko.registry,
            metadata=self._metadata,
            max_workers=self._config.data_sources.price_concurrency,
        )

    def get_accounts(self, address: str) -> List[ParsedAccount]:
        with correlation_scope():
            return self._accounts(address)

    def _position_for_nft(self, nft_mint: str) -> Optional[ParsedPosition]:
        try:
            return get_parsed_position(
                self._rpc,
                get_position_address(nft_mint),
                self._quote,
                metadata=self._metadata,
            )
        except AccountNotFoundError:
            logger.debug("NFT %s is not a Raydium CLMM position", nft_mint)
            return None

    def get_balances(self, address: str, include_positions: bool = True) -> WalletBalances:
        """Fungible accounts and, when ``include_positions``, the wallet's valued Raydium positions."""

        with correlation_scope():
            fungible, nfts = partition_position_nfts(self._accounts(address))
            if not include_positions:
                return WalletBalances(accounts=fungible)
            positions: List[ParsedPosition] = []
            if nfts:
                workers = max(1, min(self._config.data_sources.price_concurrency, len(nfts)))
                with ThreadPoolExecutor(max_workers=workers) as executor:
                    for parsed in map_in_context(executor, self._position_for_nft, [nft.mint for nft in nfts]):
                        if parsed is not None:
                            positions.append(parsed)
            return WalletBalances(accounts=fungible, raydium=positions)

    def get_position(self, position_pubkey: str, pool_pubkey: Optional[str] = None) -> ParsedPosition:
        with correlation_scope():
            return get_parsed_position(
                self._rpc,
                validate_address(position_pubkey),
                self._quote,
                pool_pubkey=validate_address(pool_pubkey) if pool_pubkey else None,
                metadata=self._metadata,
            )

    def get_transactions(self, address: str, page: Optional[str] = None) -> TransactionHistory:
        """Parsed transactions of ``address``; ``page`` (``"start-end"``) slices newest-first signatures."""

        with correlation_scope():
            return fetch_parsed_transactions(self._rpc, address, parse_page(page))


__all__ = ["ChartPoint", "WalletService"]
