"""Balance history reconstruction and time bucketing."""

from __future__ import annotations

import math
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple

from ..config.settings import ChartConfig, get_app_config
from ..datalake.schemas import ChartState, ParsedTransaction
from ..exceptions import InvalidTimeframeError
from ..utils.constants import DAY_SECONDS, HOUR_SECONDS


class Timeframe(str, Enum):
    """Width of one chart bucket."""

    HOUR = "h"
    DAY = "d"

    @property
    def seconds(self) -> int:
        return HOUR_SECONDS if self is Timeframe.HOUR else DAY_SECONDS

    @classmethod
    def from_unit(cls, unit: str) -> "Timeframe":
        try:
            return cls(unit.lower())
        except ValueError:
            raise InvalidTimeframeError(f"Unsupported timeframe unit {unit!r}") from None


def parse_timeframe(value: str, config: Optional[ChartConfig] = None) -> Tuple[Timeframe, int]:
    """Split an expression such as ``"30d"`` or ``"24h"`` into unit and range.

    Each unit has its own upper bound; a range of 0 asks for the ``now`` bucket only.
    """

    cfg = config or get_app_config().chart
    value = (value or "").strip()
    if len(value) < 2:
        raise InvalidTimeframeError(f"Timeframe must look like '<range><h|d>', got {value!r}")
    timeframe = Timeframe.from_unit(value[-1])
    try:
        requested = int(value[:-1])
    except ValueError:
        raise InvalidTimeframeError(f"Timeframe range must be an integer, got {value!r}") from None
    limit = cfg.max_hour_range if timeframe is Timeframe.HOUR else cfg.max_day_range
    if requested < 0 or requested > limit:
        raise InvalidTimeframeError(f"Timeframe range {requested} outside 0..{limit}")
    return timeframe, requested


def build_balance_states(transactions: Iterable[ParsedTransaction]) -> List[ChartState]:
    """Fold per-transaction deltas into cumulative snapshots.

    ``transactions`` must already be sorted by ``block_time``. A mint whose
    post balance is exactly zero is removed rather than kept at zero.
    """

    states: List[ChartState] = []
    balances: dict = {}
    for tx in transactions:
        balances = dict(balances)
        for mint, change in tx.balances.items():
            if change.post.formatted == 0.0:
                balances.pop(mint, None)
            else:
                balances[mint] = change.post
        states.append(ChartState(timestamp=tx.block_time, balances=balances))
    return states


def adjusted_range(states: Sequence[ChartState], bucket_seconds: int, requested_range: int, now: int) -> int:
    """Clamp ``requested_range`` so no bucket predates the wallet's first transaction by more than one."""

    if not states:
        return 0
    wallet_age_buckets = math.ceil((now - states[0].timestamp) / bucket_seconds)
    return max(0, min(requested_range, wallet_age_buckets + 1))


def resample_states(
    states: Sequence[ChartState],
    bucket_seconds: int,
    requested_range: int,
    now: int,
) -> List[ChartState]:
    """Resample snapshots onto a fixed grid ending at the bucket containing ``now``.

    Every grid bucket carries the holdings of the last state strictly before
    its boundary (or the first state when none precede it), dormant periods
    included. A trailing bucket stamped ``now`` carries the latest holdings.
    """

    if bucket_seconds not in (HOUR_SECONDS, DAY_SECONDS):
        raise InvalidTimeframeError(f"Unsupported bucket width {bucket_seconds}s")
    if not states:
        return []

    buckets_count = adjusted_range(states, bucket_seconds, requested_range, now)
    final_t = (now // bucket_seconds) * bucket_seconds
    initial_t = final_t - buckets_count * bucket_seconds

    buckets: List[ChartState] = []
    cursor = 0
    for i in range(buckets_count):
        t = initial_t + i * bucket_seconds
        while cursor < len(states) and states[cursor].timestamp < t:
            cursor += 1
        source = states[cursor - 1] if cursor > 0 else states[0]
        buckets.append(ChartState(timestamp=t, balances=dict(source.balances)))

    buckets.append(ChartState(timestamp=now, balances=dict(states[-1].balances)))
    return buckets


def build_chart_states(
    transactions: Sequence[ParsedTransaction],
    timeframe: Timeframe,
    requested_range: int,
    now: int,
) -> List[ChartState]:
    return resample_states(build_balance_states(transactions), timeframe.seconds, requested_range, now)


__all__ = [
    "Timeframe",
    "adjusted_range",
    "build_balance_states",
    "build_chart_states",
    "parse_timeframe",
    "resample_states",
]
