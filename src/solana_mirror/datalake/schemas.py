"""Request-scoped value types shared by ingestion, analytics and dapps."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(slots=True, frozen=True)
class FormattedAmount:
    """Raw token units alongside their decimal-adjusted value."""

    amount: int
    formatted: float

    @classmethod
    def from_raw(cls, raw: int, decimals: int) -> "FormattedAmount":
        raw = int(raw)
        return cls(amount=raw, formatted=raw / (10 ** int(decimals)))

    @classmethod
    def zero(cls) -> "FormattedAmount":
        return cls(amount=0, formatted=0.0)

    def to_dict(self) -> Dict[str, Any]:
        return {"amount": str(self.amount), "formatted": self.formatted}


@dataclass(slots=True, frozen=True)
class BalanceChange:
    """Pre and post balance of one mint within one transaction."""

    pre: FormattedAmount
    post: FormattedAmount

    def to_dict(self) -> Dict[str, Any]:
        return {"pre": self.pre.to_dict(), "post": self.post.to_dict()}


@dataclass(slots=True)
class ParsedTransaction:
    block_time: int
    signatures: List[str]
    logs: List[str] = field(default_factory=list)
    balances: Dict[str, BalanceChange] = field(default_factory=dict)
    parsed_instructions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "blockTime": self.block_time,
            "signatures": list(self.signatures),
            "logs": list(self.logs),
            "balances": {mint: change.to_dict() for mint, change in self.balances.items()},
            "parsedInstructions": list(self.parsed_instructions),
        }


@dataclass(slots=True)
class ChartState:
    """Cumulative holdings at one point in time; absent mints hold zero."""

    timestamp: int
    balances: Dict[str, FormattedAmount] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class PricedBalance:
    amount: FormattedAmount
    price: float

    @property
    def usd_value(self) -> float:
        return self.amount.formatted * self.price

    def to_dict(self) -> Dict[str, Any]:
        return {"amount": self.amount.to_dict(), "price": self.price}


@dataclass(slots=True)
class PricedBucket:
    timestamp: int
    balances: Dict[str, PricedBalance] = field(default_factory=dict)
    usd_value: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "balances": {mint: balance.to_dict() for mint, balance in self.balances.items()},
            "usdValue": self.usd_value,
        }

    def to_minimal(self) -> "MinimalChartPoint":
        return MinimalChartPoint(timestamp=self.timestamp, usd_value=self.usd_value)


@dataclass(slots=True, frozen=True)
class MinimalChartPoint:
    timestamp: int
    usd_value: float

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp, "usdValue": self.usd_value}


@dataclass(slots=True, frozen=True)
class TokenMetadata:
    """Human readable token details resolved outside the core."""

    name: str = ""
    symbol: str = ""
    image: str = ""


@dataclass(slots=True)
class TokenLeg:
    """One side of a liquidity position."""

    mint: str
    amount: FormattedAmount
    price: Optional[float] = None
    name: str = ""
    symbol: str = ""
    image: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mint": self.mint,
            "name": self.name,
            "symbol": self.symbol,
            "image": self.image,
            "amount": {"amount": self.amount.to_dict(), "price": self.price},
        }


@dataclass(slots=True)
class ProtocolInfo:
    name: str
    pool_id: str
    program_id: str = ""
    symbol: str = ""
    image: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "symbol": self.symbol,
            "image": self.image,
            "programId": self.program_id,
            "poolId": self.pool_id,
        }


@dataclass(slots=True)
class ParsedPosition:
    """A CLMM position valued in USD. ``total_value_usd`` is None when no leg is priced."""

    total_value_usd: Optional[float]
    protocol: ProtocolInfo
    token_a: TokenLeg
    token_b: TokenLeg
    fee_tier: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalValueUsd": self.total_value_usd,
            "protocol": self.protocol.to_dict(),
            "tokenA": self.token_a.to_dict(),
            "tokenB": self.token_b.to_dict(),
            "feeTier": self.fee_tier,
        }


@dataclass(slots=True)
class ParsedAccount:
    """A wallet's token account (or native SOL balance) with its live price."""

    mint: str
    ata: str
    decimals: int
    balance: FormattedAmount
    price: Optional[float] = None
    coingecko_id: Optional[str] = None
    name: str = ""
    symbol: str = ""
    image: str = ""

    @property
    def is_position_nft(self) -> bool:
        return self.decimals == 0 and self.balance.amount == 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mint": self.mint,
            "ata": self.ata,
            "coingeckoId": self.coingecko_id,
            "decimals": self.decimals,
            "name": self.name,
            "symbol": self.symbol,
            "image": self.image,
            "price": self.price,
            "balance": self.balance.to_dict(),
        }


@dataclass(slots=True)
class WalletBalances:
    """Token accounts plus, unless excluded, valued CLMM positions."""

    accounts: List[ParsedAccount] = field(default_factory=list)
    raydium: Optional[List[ParsedPosition]] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"accounts": [account.to_dict() for account in self.accounts]}
        if self.raydium is not None:
            payload["raydium"] = [position.to_dict() for position in self.raydium]
        return payload


@dataclass(slots=True, frozen=True)
class Page:
    start_idx: int
    end_idx: int


@dataclass(slots=True, frozen=True)
class PositionState:
    """Fields of a decoded CLMM personal position record used downstream."""

    nft_mint: str
    pool_id: str
    tick_lower: int
    tick_upper: int
    liquidity: int
    token_fees_owed_a: int = 0
    token_fees_owed_b: int = 0


@dataclass(slots=True, frozen=True)
class PoolState:
    """Fields of a decoded CLMM pool record used downstream."""

    amm_config: str
    mint_a: str
    mint_b: str
    mint_decimals_a: int
    mint_decimals_b: int
    tick_spacing: int
    liquidity: int
    sqrt_price_x64: int
    tick_current: int


__all__ = [
    "BalanceChange",
    "ChartState",
    "FormattedAmount",
    "MinimalChartPoint",
    "Page",
    "ParsedAccount",
    "ParsedPosition",
    "ParsedTransaction",
    "PoolState",
    "PositionState",
    "PricedBalance",
    "PricedBucket",
    "ProtocolInfo",
    "TokenLeg",
    "TokenMetadata",
    "WalletBalances",
]
