"""Tests for balance state building, bucketing and timeframe parsing."""

from __future__ import annotations

import math
from typing import Dict, Tuple

import pytest

from solana_mirror.analytics.chart import (
    Timeframe,
    adjusted_range,
    build_balance_states,
    build_chart_states,
    parse_timeframe,
    resample_states,
)
from solana_mirror.config.settings import ChartConfig
from solana_mirror.datalake.schemas import BalanceChange, FormattedAmount, ParsedTransaction
from solana_mirror.exceptions import InvalidTimeframeError
from solana_mirror.utils.constants import DAY_SECONDS, HOUR_SECONDS, SOL_MINT, USDC_MINT


def _tx(block_time: int, changes: Dict[str, Tuple[float, float]], decimals: int = 9) -> ParsedTransaction:
    balances = {
        mint: BalanceChange(
            pre=FormattedAmount.from_raw(round(pre * 10**decimals), decimals),
            post=FormattedAmount.from_raw(round(post * 10**decimals), decimals),
        )
        for mint, (pre, post) in changes.items()
    }
    return ParsedTransaction(block_time=block_time, signatures=[f"sig-{block_time}"], balances=balances)


def _history():
    return [
        _tx(1 * DAY_SECONDS + 100, {SOL_MINT: (0.0, 5.0)}),
        _tx(3 * DAY_SECONDS + 50, {SOL_MINT: (5.0, 4.0), USDC_MINT: (0.0, 20.0)}),
        _tx(8 * DAY_SECONDS, {USDC_MINT: (20.0, 12.0)}),
    ]


def test_balance_states_accumulate_post_balances() -> None:
    states = build_balance_states(_history())

    assert [state.timestamp for state in states] == [tx.block_time for tx in _history()]
    assert states[0].balances[SOL_MINT].formatted == 5.0
    assert states[1].balances[SOL_MINT].formatted == 4.0
    assert states[2].balances[SOL_MINT].formatted == 4.0
    assert states[2].balances[USDC_MINT].formatted == 12.0
    # earlier snapshots are not mutated by later transactions
    assert states[1].balances[USDC_MINT].formatted == 20.0


def test_zero_post_balance_removes_the_mint() -> None:
    states = build_balance_states(
        [
            _tx(100, {USDC_MINT: (0.0, 3.0)}),
            _tx(200, {USDC_MINT: (3.0, 0.0)}),
            _tx(300, {SOL_MINT: (0.0, 1.0)}),
        ]
    )

    assert USDC_MINT in states[0].balances
    assert USDC_MINT not in states[1].balances
    assert USDC_MINT not in states[2].balances

    reintroduced = build_balance_states(
        [_tx(100, {USDC_MINT: (0.0, 3.0)}), _tx(200, {USDC_MINT: (3.0, 0.0)}), _tx(300, {USDC_MINT: (0.0, 2.0)})]
    )
    assert reintroduced[2].balances[USDC_MINT].formatted == 2.0


def test_resample_emits_grid_plus_now_bucket() -> None:
    now = 10 * DAY_SECONDS + 5_000
    states = build_balance_states(_history())

    buckets = resample_states(states, DAY_SECONDS, 5, now)

    assert [bucket.timestamp for bucket in buckets] == [
        5 * DAY_SECONDS,
        6 * DAY_SECONDS,
        7 * DAY_SECONDS,
        8 * DAY_SECONDS,
        9 * DAY_SECONDS,
        now,
    ]
    # a transaction exactly on a boundary belongs to the following bucket
    assert buckets[3].balances[USDC_MINT].formatted == 20.0
    assert buckets[4].balances[USDC_MINT].formatted == 12.0
    assert buckets[-1].balances[USDC_MINT].formatted == 12.0


def test_dormant_periods_carry_balances_forward() -> None:
    now = 10 * DAY_SECONDS + 5_000
    buckets = resample_states(build_balance_states(_history()), DAY_SECONDS, 5, now)

    for bucket in buckets[:3]:
        assert bucket.balances[SOL_MINT].formatted == 4.0
        assert bucket.balances[USDC_MINT].formatted == 20.0


def test_length_and_monotonic_timestamps() -> None:
    now = 10 * DAY_SECONDS + 5_000
    states = build_balance_states(_history())

    for bucket_seconds in (HOUR_SECONDS, DAY_SECONDS):
        for requested in (0, 1, 3, 24, 200):
            buckets = resample_states(states, bucket_seconds, requested, now)
            expected = adjusted_range(states, bucket_seconds, requested, now)
            assert len(buckets) == expected + 1
            timestamps = [bucket.timestamp for bucket in buckets]
            assert timestamps == sorted(timestamps)


def test_requested_range_is_clamped_to_wallet_age() -> None:
    now = 10 * DAY_SECONDS + 5_000
    states = build_balance_states(_history())
    first = states[0].timestamp

    expected = math.ceil((now - first) / DAY_SECONDS) + 1
    assert adjusted_range(states, DAY_SECONDS, 255, now) == expected
    assert len(resample_states(states, DAY_SECONDS, 255, now)) == expected + 1


def test_resampling_is_idempotent() -> None:
    now = 10 * DAY_SECONDS + 5_000
    states = build_balance_states(_history())

    first = resample_states(states, HOUR_SECONDS, 48, now)
    second = resample_states(states, HOUR_SECONDS, 48, now)

    assert first == second


def test_single_transaction_day_window() -> None:
    block_time = 1_700_000_000
    now = block_time + 3_600
    transactions = [_tx(block_time, {SOL_MINT: (0.0, 10.0)})]

    buckets = build_chart_states(transactions, Timeframe.DAY, 1, now)

    assert len(buckets) == 2
    assert buckets[0].timestamp == (now // DAY_SECONDS) * DAY_SECONDS - DAY_SECONDS
    assert buckets[0].timestamp < block_time
    assert buckets[1].timestamp == now
    assert buckets[1].balances[SOL_MINT].formatted == 10.0
    assert buckets[1].balances[SOL_MINT].amount == 10_000_000_000


def test_raise_then_zero_out_drops_key_from_now_bucket() -> None:
    transactions = [
        _tx(1_000, {USDC_MINT: (0.0, 7.0)}, decimals=6),
        _tx(2_000, {USDC_MINT: (7.0, 0.0)}, decimals=6),
    ]
    states = build_balance_states(transactions)
    assert USDC_MINT not in states[1].balances

    buckets = resample_states(states, HOUR_SECONDS, 1, 2_500)
    assert USDC_MINT not in buckets[-1].balances


def test_empty_history_yields_no_buckets() -> None:
    assert resample_states([], DAY_SECONDS, 30, 1_000_000) == []


def test_unsupported_bucket_width_is_rejected() -> None:
    with pytest.raises(InvalidTimeframeError):
        resample_states(build_balance_states(_history()), 60, 5, 10 * DAY_SECONDS)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("30d", (Timeframe.DAY, 30)),
        ("12h", (Timeframe.HOUR, 12)),
        ("1D", (Timeframe.DAY, 1)),
        ("0d", (Timeframe.DAY, 0)),
        ("255h", (Timeframe.HOUR, 255)),
    ],
)
def test_parse_timeframe(value: str, expected) -> None:
    assert parse_timeframe(value, ChartConfig()) == expected


@pytest.mark.parametrize("value", ["", "d", "30x", "abcd", "-1d", "256d", "300h"])
def test_parse_timeframe_rejects_bad_input(value: str) -> None:
    with pytest.raises(InvalidTimeframeError):
        parse_timeframe(value, ChartConfig())


def test_timeframe_seconds() -> None:
    assert Timeframe.HOUR.seconds == HOUR_SECONDS
    assert Timeframe.DAY.seconds == DAY_SECONDS


def test_each_unit_has_its_own_range_limit() -> None:
    config = ChartConfig(max_hour_range=48)

    assert parse_timeframe("48h", config) == (Timeframe.HOUR, 48)
    assert parse_timeframe("49d", config) == (Timeframe.DAY, 49)
    with pytest.raises(InvalidTimeframeError):
        parse_timeframe("49h", config)


def test_zero_range_yields_only_the_now_bucket() -> None:
    now = 10 * DAY_SECONDS + 5_000
    states = build_balance_states(_history())
    timeframe, requested = parse_timeframe("0d", ChartConfig())

    buckets = resample_states(states, timeframe.seconds, requested, now)

    assert [bucket.timestamp for bucket in buckets] == [now]
    assert buckets[0].balances[USDC_MINT].formatted == 12.0
