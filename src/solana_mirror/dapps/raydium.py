"""Raydium concentrated-liquidity position decoding and valuation.

Account layouts are declared once below with ``construct``; all integers are
little-endian and fields are packed without alignment padding.
"""

from __future__ import annotations

import math
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional, Tuple

from construct import Array, Bytes, BytesInteger, ConstructError, Int8ul, Int16ul, Int32sl, Int64ul, Padding, Struct

from ..datalake.schemas import (
    FormattedAmount,
    ParsedPosition,
    PoolState,
    PositionState,
    ProtocolInfo,
    TokenLeg,
    TokenMetadata,
)
from ..exceptions import ParseError
from ..ingestion.metadata import MetadataCache
from ..ingestion.pricing import LiveQuoteSource
from ..ingestion.rpc_client import SolanaRpcClient
from ..monitoring.logger import get_logger, submit_in_context
from ..utils.constants import RAYDIUM_CLMM_PROGRAM_ID
from ..utils.pubkeys import PubkeyField, find_program_address, parse_pubkey

logger = get_logger(__name__)

PROTOCOL_NAME = "Raydium"
POSITION_SEED = b"position"
Q64 = 2**64

U128 = BytesInteger(16, swapped=True)

POSITION_REWARD_INFO_LAYOUT = Struct(
    "growth_inside_last_x64" / U128,
    "reward_amount_owed" / Int64ul,
)

POSITION_LAYOUT = Struct(
    "discriminator" / Bytes(8),
    "bump" / Int8ul,
    "nft_mint" / PubkeyField,
    "pool_id" / PubkeyField,
    "tick_lower" / Int32sl,
    "tick_upper" / Int32sl,
    "liquidity" / U128,
    "fee_growth_inside_last_x64_a" / U128,
    "fee_growth_inside_last_x64_b" / U128,
    "token_fees_owed_a" / Int64ul,
    "token_fees_owed_b" / Int64ul,
    "reward_infos" / Array(3, POSITION_REWARD_INFO_LAYOUT),
    "padding" / Padding(8 * 8),
)

POOL_REWARD_INFO_LAYOUT = Struct(
    "reward_state" / Int8ul,
    "open_time" / Int64ul,
    "end_time" / Int64ul,
    "last_update_time" / Int64ul,
    "emissions_per_second_x64" / U128,
    "reward_total_emissioned" / Int64ul,
    "reward_claimed" / Int64ul,
    "token_mint" / PubkeyField,
    "token_vault" / PubkeyField,
    "creator" / PubkeyField,
    "reward_growth_global_x64" / U128,
)

POOL_LAYOUT = Struct(
    "discriminator" / Bytes(8),
    "bump" / Int8ul,
    "amm_config" / PubkeyField,
    "creator" / PubkeyField,
    "mint_a" / PubkeyField,
    "mint_b" / PubkeyField,
    "vault_a" / PubkeyField,
    "vault_b" / PubkeyField,
    "observation_id" / PubkeyField,
    "mint_decimals_a" / Int8ul,
    "mint_decimals_b" / Int8ul,
    "tick_spacing" / Int16ul,
    "liquidity" / U128,
    "sqrt_price_x64" / U128,
    "tick_current" / Int32sl,
    "observation_index" / Int16ul,
    "observation_update_duration" / Int16ul,
    "fee_growth_global_x64_a" / U128,
    "fee_growth_global_x64_b" / U128,
    "protocol_fees_token_a" / Int64ul,
    "protocol_fees_token_b" / Int64ul,
    "swap_in_amount_token_a" / U128,
    "swap_out_amount_token_b" / U128,
    "swap_in_amount_token_b" / U128,
    "swap_out_amount_token_a" / U128,
    "status" / Int8ul,
    "reserved" / Padding(7),
    "reward_infos" / Array(3, POOL_REWARD_INFO_LAYOUT),
    "tick_array_bitmap" / Array(16, Int64ul),
    "total_fees_token_a" / Int64ul,
    "total_fees_claimed_token_a" / Int64ul,
    "total_fees_token_b" / Int64ul,
    "total_fees_claimed_token_b" / Int64ul,
    "fund_fees_token_a" / Int64ul,
    "fund_fees_token_b" / Int64ul,
    "start_time" / Int64ul,
    "padding" / Padding(8 * 8),
)


def _parse(layout: Struct, data: bytes, name: str) -> Any:
    try:
        return layout.parse(bytes(data))
    except (ConstructError, ValueError) as exc:
        raise ParseError(f"Cannot decode {name} account ({len(data)} bytes): {exc}") from exc


def decode_position(data: bytes) -> PositionState:
    parsed = _parse(POSITION_LAYOUT, data, "position")
    return PositionState(
        nft_mint=parsed.nft_mint,
        pool_id=parsed.pool_id,
        tick_lower=parsed.tick_lower,
        tick_upper=parsed.tick_upper,
        liquidity=parsed.liquidity,
        token_fees_owed_a=parsed.token_fees_owed_a,
        token_fees_owed_b=parsed.token_fees_owed_b,
    )


def decode_pool(data: bytes) -> PoolState:
    parsed = _parse(POOL_LAYOUT, data, "pool")
    return PoolState(
        amm_config=parsed.amm_config,
        mint_a=parsed.mint_a,
        mint_b=parsed.mint_b,
        mint_decimals_a=parsed.mint_decimals_a,
        mint_decimals_b=parsed.mint_decimals_b,
        tick_spacing=parsed.tick_spacing,
        liquidity=parsed.liquidity,
        sqrt_price_x64=parsed.sqrt_price_x64,
        tick_current=parsed.tick_current,
    )


def tick_to_sqrt_price(tick: int) -> float:
    return math.sqrt(1.0001**tick)


def raw_token_amounts(
    liquidity: int,
    tick_lower: int,
    tick_upper: int,
    sqrt_price_x64: int,
) -> Tuple[float, float]:
    """Unrounded token amounts held by ``liquidity`` between two ticks."""

    sqrt_price = sqrt_price_x64 / Q64
    sqrt_lower = tick_to_sqrt_price(tick_lower)
    sqrt_upper = tick_to_sqrt_price(tick_upper)
    liquidity_f = float(liquidity)

    if sqrt_price <= sqrt_lower:
        return liquidity_f * (1.0 / sqrt_lower - 1.0 / sqrt_upper), 0.0
    if sqrt_price < sqrt_upper:
        return (
            liquidity_f * (1.0 / sqrt_price - 1.0 / sqrt_upper),
            liquidity_f * (sqrt_price - sqrt_lower),
        )
    return 0.0, liquidity_f * (sqrt_upper - sqrt_lower)


def calculate_token_amounts(
    liquidity: int,
    tick_lower: int,
    tick_upper: int,
    sqrt_price_x64: int,
) -> Tuple[int, int]:
    """Token amounts in raw units, rounded to the nearest whole unit."""

    amount_a, amount_b = raw_token_amounts(liquidity, tick_lower, tick_upper, sqrt_price_x64)
    return round(amount_a), round(amount_b)


def total_value(
    formatted_a: float,
    formatted_b: float,
    price_a: Optional[float],
    price_b: Optional[float],
) -> Optional[float]:
    """USD value of both legs; None (not 0.0) when neither leg is priced."""

    if price_a is None and price_b is None:
        return None
    value = 0.0
    if price_a is not None:
        value += formatted_a * price_a
    if price_b is not None:
        value += formatted_b * price_b
    return value


def value_position(
    position: PositionState,
    pool: PoolState,
    price_a: Optional[float],
    price_b: Optional[float],
    *,
    pool_id: Optional[str] = None,
    metadata_a: Optional[TokenMetadata] = None,
    metadata_b: Optional[TokenMetadata] = None,
    protocol_metadata: Optional[TokenMetadata] = None,
) -> ParsedPosition:
    """Value ``position`` at the pool's current price.

    ``protocol_metadata`` is the position NFT's metadata; without a name the
    protocol is reported as Raydium.
    """

    raw_a, raw_b = calculate_token_amounts(
        position.liquidity,
        position.tick_lower,
        position.tick_upper,
        pool.sqrt_price_x64,
    )
    amount_a = FormattedAmount.from_raw(raw_a, pool.mint_decimals_a)
    amount_b = FormattedAmount.from_raw(raw_b, pool.mint_decimals_b)
    meta_a = metadata_a or TokenMetadata()
    meta_b = metadata_b or TokenMetadata()
    meta_protocol = protocol_metadata or TokenMetadata()
    return ParsedPosition(
        total_value_usd=total_value(amount_a.formatted, amount_b.formatted, price_a, price_b),
        protocol=ProtocolInfo(
            name=meta_protocol.name or PROTOCOL_NAME,
            pool_id=pool_id or position.pool_id,
            program_id=RAYDIUM_CLMM_PROGRAM_ID,
            symbol=meta_protocol.symbol,
            image=meta_protocol.image,
        ),
        token_a=TokenLeg(
            mint=pool.mint_a,
            amount=amount_a,
            price=price_a,
            name=meta_a.name,
            symbol=meta_a.symbol,
            image=meta_a.image,
        ),
        token_b=TokenLeg(
            mint=pool.mint_b,
            amount=amount_b,
            price=price_b,
            name=meta_b.name,
            symbol=meta_b.symbol,
            image=meta_b.image,
        ),
        # Pool records carry no fee rate; it lives in the AMM config account.
        fee_tier="",
    )


def get_position_address(nft_mint: str) -> str:
    """Personal position PDA for a position NFT mint."""

    return find_program_address([POSITION_SEED, bytes(parse_pubkey(nft_mint))], RAYDIUM_CLMM_PROGRAM_ID)


def get_parsed_position(
    client: SolanaRpcClient,
    position_pubkey: str,
    quote: LiveQuoteSource,
    pool_pubkey: Optional[str] = None,
    metadata: Optional[MetadataCache] = None,
) -> ParsedPosition:
    """Fetch, decode and value one position; the pool defaults to the position's own pool."""

    position = decode_position(client.get_account_info(position_pubkey))
    pool_id = pool_pubkey or position.pool_id
    pool = decode_pool(client.get_account_info(pool_id))

    with ThreadPoolExecutor(max_workers=2) as executor:
        future_a = submit_in_context(executor, quote.live_quote, pool.mint_a, pool.mint_decimals_a)
        future_b = submit_in_context(executor, quote.live_quote, pool.mint_b, pool.mint_decimals_b)
        price_a, price_b = future_a.result(), future_b.result()

    cache = metadata or MetadataCache()
    parsed = value_position(
        position,
        pool,
        price_a,
        price_b,
        pool_id=pool_id,
        metadata_a=cache.get(pool.mint_a),
        metadata_b=cache.get(pool.mint_b),
        protocol_metadata=cache.get(position.nft_mint),
    )
    logger.info(
        "Valued position %s in pool %s at %s USD",
        position_pubkey,
        pool_id,
        parsed.total_value_usd,
    )
    return parsed


__all__ = [
    "POOL_LAYOUT",
    "POSITION_LAYOUT",
    "calculate_token_amounts",
    "decode_pool",
    "decode_position",
    "get_parsed_position",
    "get_position_address",
    "raw_token_amounts",
    "total_value",
    "value_position",
]
