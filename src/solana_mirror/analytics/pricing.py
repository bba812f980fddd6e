"""Attach USD prices to bucketed balance snapshots."""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from ..datalake.schemas import ChartState, PricedBalance, PricedBucket
from ..ingestion.pricing import (
    HistoricalPriceFeed,
    HistoricalPriceSource,
    LivePriceSource,
    LiveQuoteSource,
    PriceSource,
)
from ..monitoring.logger import get_logger
from ..utils.constants import DAY_SECONDS, HOUR_SECONDS

logger = get_logger(__name__)

DEFAULT_DAILY_THRESHOLD_DAYS = 90


def price_time_step(start: int, end: int, daily_threshold_days: int = DEFAULT_DAILY_THRESHOLD_DAYS) -> int:
    """Daily price granularity for spans longer than the threshold, hourly otherwise."""

    return DAY_SECONDS if (end - start) > daily_threshold_days * DAY_SECONDS else HOUR_SECONDS


def select_price_source(
    index: int,
    count: int,
    historical: PriceSource,
    live: PriceSource,
    *,
    single_instant: bool = False,
) -> PriceSource:
    """The newest bucket is priced live; every earlier bucket from history.

    ``single_instant`` (first and last bucket share a timestamp) prices every
    bucket live.
    """

    if single_instant or index == count - 1:
        return live
    return historical


def align_prices(
    buckets: Sequence[ChartState],
    historical_feed: HistoricalPriceFeed,
    live_quote: LiveQuoteSource,
    *,
    daily_threshold_days: int = DEFAULT_DAILY_THRESHOLD_DAYS,
    max_workers: int = 4,
) -> List[PricedBucket]:
    """Price every balance in ``buckets`` and total each bucket in USD.

    Mints without a price contribute 0.0. When the first and last bucket
    share a timestamp the historical feed is never queried.
    """

    if not buckets:
        return []

    start, end = buckets[0].timestamp, buckets[-1].timestamp
    single_instant = start == end
    historical = HistoricalPriceSource(
        historical_feed,
        price_time_step(start, end, daily_threshold_days),
        max_workers=max_workers,
    )
    live = LivePriceSource(live_quote, max_workers=max_workers)

    count = len(buckets)
    historical_mints: Dict[str, None] = {}
    live_mints: Dict[str, None] = {}
    for index, bucket in enumerate(buckets):
        source = select_price_source(index, count, historical, live, single_instant=single_instant)
        target = live_mints if source is live else historical_mints
        target.update(dict.fromkeys(bucket.balances))

    if historical_mints:
        historical.prepare(list(historical_mints), start, end)
    live.prepare(list(live_mints), start, end)

    priced: List[PricedBucket] = []
    for index, bucket in enumerate(buckets):
        source = select_price_source(index, count, historical, live, single_instant=single_instant)
        balances: Dict[str, PricedBalance] = {}
        for mint, amount in bucket.balances.items():
            price: Optional[float] = source.price_at(mint, bucket.timestamp)
            balances[mint] = PricedBalance(amount=amount, price=price if price is not None else 0.0)
        usd_value = sum(balance.usd_value for balance in balances.values())
        priced.append(PricedBucket(timestamp=bucket.timestamp, balances=balances, usd_value=usd_value))

    logger.debug("Priced %d buckets (%d historical mints)", count, len(historical_mints))
    return priced


__all__ = ["align_prices", "price_time_step", "select_price_source"]
