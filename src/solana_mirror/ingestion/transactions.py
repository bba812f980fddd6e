"""Transaction history fetching and per-signer balance delta extraction."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from ..datalake.schemas import BalanceChange, FormattedAmount, Page, ParsedTransaction
from ..exceptions import InvalidAddressError, InvalidPageError, ParseError
from ..monitoring.logger import get_logger, map_in_context
from ..monitoring.metrics import METRICS
from ..utils.constants import INSTRUCTION_LOG_PREFIX, SOL_DECIMALS, SOL_MINT
from ..utils.pubkeys import validate_address
from .rpc_client import SolanaRpcClient

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class TransactionHistory:
    """Parsed transactions in ascending ``block_time`` order.

    ``dropped`` counts records that were fetched but could not be parsed for
    the requested signer (missing record, signer not among the account keys,
    malformed meta). They are excluded from ``transactions``.
    """

    transactions: List[ParsedTransaction] = field(default_factory=list)
    dropped: int = 0


def _transaction_body(raw: Dict[str, Any]) -> Dict[str, Any]:
    transaction = raw.get("transaction")
    if not isinstance(transaction, dict):
        raise ParseError("Transaction record has no transaction body")
    return transaction


def _first_signature(record: Any) -> str:
    transaction = record.get("transaction") if isinstance(record, dict) else None
    signatures = transaction.get("signatures") if isinstance(transaction, dict) else None
    return str(signatures[0]) if isinstance(signatures, list) and signatures else "<unknown>"


def _account_keys(raw: Dict[str, Any]) -> List[str]:
    message = _transaction_body(raw).get("message")
    if not isinstance(message, dict):
        raise ParseError("Transaction record has no message")
    keys: List[str] = []
    for key in message.get("accountKeys", []):
        # jsonParsed encoding wraps each key in an object
        keys.append(key.get("pubkey", "") if isinstance(key, dict) else str(key))
    loaded = (raw.get("meta") or {}).get("loadedAddresses") or {}
    keys.extend(loaded.get("writable", []))
    keys.extend(loaded.get("readonly", []))
    return keys


def _token_amounts(entries: Iterable[Dict[str, Any]], signer: str) -> Dict[str, FormattedAmount]:
    totals: Dict[str, Tuple[int, int]] = {}
    for entry in entries:
        if entry.get("owner") != signer:
            continue
        mint = entry.get("mint")
        ui_amount = entry.get("uiTokenAmount") or {}
        try:
            raw = int(ui_amount["amount"])
            decimals = int(ui_amount["decimals"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ParseError(f"Malformed token balance for mint {mint}") from exc
        previous, _ = totals.get(mint, (0, decimals))
        totals[mint] = (previous + raw, decimals)
    return {mint: FormattedAmount.from_raw(raw, decimals) for mint, (raw, decimals) in totals.items()}


def parse_instructions(logs: Iterable[str]) -> List[str]:
    return [line[len(INSTRUCTION_LOG_PREFIX):] for line in logs if line.startswith(INSTRUCTION_LOG_PREFIX)]


def parse_transaction(raw: Dict[str, Any], signer: str) -> ParsedTransaction:
    """Extract the balance changes ``signer`` saw in one ``getTransaction`` record.

    Raises :class:`InvalidAddressError` when the signer is not one of the
    transaction's account keys, and :class:`ParseError` when the record is
    missing its block time or meta.
    """

    if not isinstance(raw, dict):
        raise ParseError("Transaction record is not an object")
    meta = raw.get("meta")
    if not isinstance(meta, dict) or not meta:
        raise ParseError("Transaction record has no meta")
    block_time = raw.get("blockTime")
    if block_time is None:
        raise ParseError("Transaction record has no block time")

    keys = _account_keys(raw)
    try:
        signer_index = keys.index(signer)
    except ValueError:
        raise InvalidAddressError(f"{signer} is not an account of this transaction") from None

    balances: Dict[str, BalanceChange] = {}

    pre_lamports = meta.get("preBalances", [])
    post_lamports = meta.get("postBalances", [])
    try:
        pre_sol = int(pre_lamports[signer_index])
        post_sol = int(post_lamports[signer_index])
    except (IndexError, TypeError, ValueError) as exc:
        raise ParseError("Lamport balances do not cover the signer's account") from exc
    if pre_sol != post_sol:
        balances[SOL_MINT] = BalanceChange(
            pre=FormattedAmount.from_raw(pre_sol, SOL_DECIMALS),
            post=FormattedAmount.from_raw(post_sol, SOL_DECIMALS),
        )

    pre_tokens = _token_amounts(meta.get("preTokenBalances") or [], signer)
    post_tokens = _token_amounts(meta.get("postTokenBalances") or [], signer)
    for mint in dict.fromkeys([*pre_tokens, *post_tokens]):
        balances[mint] = BalanceChange(
            pre=pre_tokens.get(mint, FormattedAmount.zero()),
            post=post_tokens.get(mint, FormattedAmount.zero()),
        )

    logs = list(meta.get("logMessages") or [])
    return ParsedTransaction(
        block_time=int(block_time),
        signatures=list(_transaction_body(raw).get("signatures") or []),
        logs=logs,
        balances=balances,
        parsed_instructions=parse_instructions(logs),
    )


def create_batches(items: Sequence[T], batch_size: int, limit: Optional[int] = None) -> List[List[T]]:
    """Split ``items`` into chunks of ``batch_size``, keeping at most ``limit`` items overall."""

    if batch_size <= 0:
        raise ValueError("batch_size must be positive")
    capped = list(items if limit is None else items[: max(limit, 0)])
    return [capped[idx : idx + batch_size] for idx in range(0, len(capped), batch_size)]


def parse_page(index: Optional[str]) -> Optional[Page]:
    """Parse a ``start-end`` page expression (end exclusive)."""

    if index is None:
        return None
    parts = index.split("-")
    if len(parts) != 2:
        raise InvalidPageError(f"Page must look like 'start-end', got {index!r}")
    try:
        start_idx, end_idx = int(parts[0]), int(parts[1])
    except ValueError:
        raise InvalidPageError(f"Page bounds must be integers, got {index!r}") from None
    if start_idx < 0 or end_idx < start_idx:
        raise InvalidPageError(f"Page end must not precede its start, got {index!r}")
    return Page(start_idx=start_idx, end_idx=end_idx)


def fetch_transactions(client: SolanaRpcClient, signatures: Sequence[str]) -> List[Optional[Dict[str, Any]]]:
    """Fetch raw records in fixed-size batches, several batches at a time."""

    config = client.config
    batches = create_batches(signatures, config.transaction_batch_size)
    if not batches:
        return []
    records: List[Optional[Dict[str, Any]]] = []
    if config.request_concurrency > 1 and len(batches) > 1:
        with ThreadPoolExecutor(max_workers=config.request_concurrency) as executor:
            for batch_records in map_in_context(executor, client.get_transactions, batches):
                records.extend(batch_records)
    else:
        for batch in batches:
            records.extend(client.get_transactions(batch))
    METRICS.increment("transactions.fetched", len(records))
    return records


def parse_records(records: Iterable[Optional[Dict[str, Any]]], signer: str) -> TransactionHistory:
    history = TransactionHistory()
    for record in records:
        if record is None:
            history.dropped += 1
            continue
        try:
            history.transactions.append(parse_transaction(record, signer))
        except (InvalidAddressError, ParseError) as exc:
            history.dropped += 1
            logger.warning(
                "Dropping transaction %s for %s: %s",
                _first_signature(record),
                signer,
                exc,
            )
    if history.dropped:
        METRICS.increment("transactions.parse_dropped", history.dropped)
    history.transactions.sort(key=lambda tx: tx.block_time)
    return history


def fetch_parsed_transactions(
    client: SolanaRpcClient,
    address: str,
    page: Optional[Page] = None,
) -> TransactionHistory:
    """Fetch and parse the full (or paged) history of ``address``, oldest first.

    ``page`` slices the newest-first signature list before anything is fetched.
    """

    signer = validate_address(address)
    signatures = client.fetch_signatures(signer)
    if page is not None:
        signatures = signatures[page.start_idx : page.end_idx]
    history = parse_records(fetch_transactions(client, signatures), signer)
    logger.info(
        "Parsed %d transactions for %s (%d dropped)",
        len(history.transactions),
        signer,
        history.dropped,
    )
    return history


__all__ = [
    "TransactionHistory",
    "create_batches",
    "fetch_parsed_transactions",
    "fetch_transactions",
    "parse_instructions",
    "parse_page",
    "parse_records",
    "parse_transaction",
]
