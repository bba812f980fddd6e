"""Current token balances of a wallet, priced live."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..datalake.schemas import FormattedAmount, ParsedAccount
from ..exceptions import ParseError
from ..monitoring.logger import get_logger, map_in_context
from ..utils.constants import SOL_DECIMALS, SOL_MINT, TOKEN_PROGRAM_ID
from ..utils.pubkeys import validate_address
from .metadata import MetadataCache
from .pricing import CoinGeckoIdRegistry, LiveQuoteSource
from .rpc_client import SolanaRpcClient

logger = get_logger(__name__)


def parse_token_account(entry: Dict[str, Any]) -> Tuple[str, str, int, FormattedAmount]:
    """Pull ``(mint, ata, decimals, balance)`` out of a jsonParsed token account."""

    try:
        info = entry["account"]["data"]["parsed"]["info"]
        token_amount = info["tokenAmount"]
        mint = str(info["mint"])
        decimals = int(token_amount["decimals"])
        raw = int(token_amount["amount"])
        ata = str(entry["pubkey"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ParseError("Malformed jsonParsed token account") from exc
    return mint, ata, decimals, FormattedAmount.from_raw(raw, decimals)


def get_parsed_accounts(
    client: SolanaRpcClient,
    address: str,
    quote: LiveQuoteSource,
    *,
    registry: Optional[CoinGeckoIdRegistry] = None,
    metadata: Optional[MetadataCache] = None,
    max_workers: int = 4,
) -> List[ParsedAccount]:
    """Every SPL token account owned by ``address`` followed by its native SOL balance.

    Fungible accounts are priced with one live quote each, fetched
    concurrently. Position NFTs are left unpriced.
    """

    owner = validate_address(address)
    cache = metadata or MetadataCache()
    raw_accounts = client.get_token_accounts_by_owner(owner, TOKEN_PROGRAM_ID)

    accounts: List[ParsedAccount] = []
    for entry in raw_accounts:
        mint, ata, decimals, balance = parse_token_account(entry)
        meta = cache.get(mint)
        accounts.append(
            ParsedAccount(
                mint=mint,
                ata=ata,
                decimals=decimals,
                balance=balance,
                coingecko_id=registry.get_id(mint) if registry else None,
                name=meta.name,
                symbol=meta.symbol,
                image=meta.image,
            )
        )

    lamports = client.get_balance(owner)
    sol_meta = cache.get(SOL_MINT)
    accounts.append(
        ParsedAccount(
            mint=SOL_MINT,
            ata=owner,
            decimals=SOL_DECIMALS,
            balance=FormattedAmount.from_raw(lamports, SOL_DECIMALS),
            coingecko_id=registry.get_id(SOL_MINT) if registry else None,
            name=sol_meta.name,
            symbol=sol_meta.symbol,
            image=sol_meta.image,
        )
    )

    priced = [account for account in accounts if not account.is_position_nft]
    if priced:
        with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(priced)))) as executor:
            prices = map_in_context(executor, lambda acc: quote.live_quote(acc.mint, acc.decimals), priced)
        for account, price in zip(priced, prices):
            account.price = price

    logger.info("Loaded %d accounts for %s", len(accounts), owner)
    return accounts


def partition_position_nfts(
    accounts: Sequence[ParsedAccount],
) -> Tuple[List[ParsedAccount], List[ParsedAccount]]:
    """Split accounts into ``(fungible, position_nfts)``; NFTs hold exactly one raw unit at 0 decimals."""

    fungible: List[ParsedAccount] = []
    nfts: List[ParsedAccount] = []
    for account in accounts:
        (nfts if account.is_position_nft else fungible).append(account)
    return fungible, nfts


__all__ = ["get_parsed_accounts", "parse_token_account", "partition_position_nfts"]
