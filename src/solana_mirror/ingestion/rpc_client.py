"""Minimal Solana JSON-RPC client with rate-limit aware retries."""

from __future__ import annotations

import base64
import uuid
from typing import Any, Dict, List, Optional, Sequence

import requests
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from ..config.settings import RPCConfig, get_app_config
from ..exceptions import AccountNotFoundError, FetchError, ParseError, RateLimitedError
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..utils.constants import TOKEN_PROGRAM_ID
from ..utils.pubkeys import validate_address

DEFAULT_HEADERS = {
    "Content-Type": "application/json",
    "User-Agent": "solana-mirror/1.0",
}

# JSON-RPC error codes some providers use for throttling.
_RATE_LIMIT_CODES = {429, -32429, -32005}


def _request(method: str, params: Optional[list] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"jsonrpc": "2.0", "id": uuid.uuid4().hex, "method": method}
    if params is not None:
        body["params"] = params
    return body


def _is_rate_limit_error(error: Any) -> bool:
    if not isinstance(error, dict):
        return False
    code = error.get("code")
    message = str(error.get("message", "")).lower()
    return code in _RATE_LIMIT_CODES or "too many requests" in message or "rate limit" in message


class SolanaRpcClient:
    """Thin wrapper over a single JSON-RPC endpoint.

    Transport failures raise :class:`FetchError`, malformed payloads raise
    :class:`ParseError`, and throttling raises :class:`RateLimitedError` so
    callers can tell them apart. Only batched transaction fetches are retried,
    and only when rate limited.
    """

    def __init__(
        self,
        config: Optional[RPCConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._config = config or get_app_config().rpc
        self._session = session or requests.Session()
        self._url = str(self._config.primary_url)
        self._logger = get_logger(__name__)

    @property
    def config(self) -> RPCConfig:
        return self._config

    def _post(self, body: Any) -> Any:
        try:
            response = self._session.post(
                self._url,
                json=body,
                headers=DEFAULT_HEADERS,
                timeout=self._config.request_timeout,
            )
        except requests.RequestException as exc:
            raise FetchError(f"RPC request to {self._url} failed: {exc}") from exc
        if response.status_code == 429:
            METRICS.increment("rpc.rate_limited")
            raise RateLimitedError(f"RPC endpoint {self._url} rate limited the request")
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise FetchError(f"RPC endpoint returned HTTP {response.status_code}") from exc
        try:
            return response.json()
        except ValueError as exc:
            raise ParseError("RPC endpoint returned a non-JSON body") from exc

    def _unwrap(self, payload: Any, method: str) -> Any:
        if not isinstance(payload, dict):
            raise ParseError(f"Unexpected {method} response shape: {type(payload).__name__}")
        error = payload.get("error")
        if error is not None:
            if _is_rate_limit_error(error):
                METRICS.increment("rpc.rate_limited")
                raise RateLimitedError(f"{method} rate limited: {error}")
            raise FetchError(f"{method} failed: {error}")
        if "result" not in payload:
            raise ParseError(f"{method} response carries no result")
        return payload["result"]

    def call(self, method: str, params: Optional[list] = None) -> Any:
        return self._unwrap(self._post(_request(method, params)), method)

    def get_signatures_for_address(
        self,
        address: str,
        *,
        before: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        options: Dict[str, Any] = {
            "commitment": self._config.commitment,
            "limit": limit or self._config.signature_page_limit,
        }
        if before:
            options["before"] = before
        result = self.call("getSignaturesForAddress", [validate_address(address), options])
        if not isinstance(result, list):
            raise ParseError("getSignaturesForAddress result is not a list")
        return result

    def fetch_signatures(self, address: str) -> List[str]:
        """Return every signature for ``address``, newest first.

        Pages are walked with the ``before`` cursor and stop at the first page
        shorter than the configured page limit.
        """

        page_limit = self._config.signature_page_limit
        signatures: List[str] = []
        before: Optional[str] = None
        while True:
            page = self.get_signatures_for_address(address, before=before, limit=page_limit)
            mapped = [entry["signature"] for entry in page if isinstance(entry, dict) and entry.get("signature")]
            signatures.extend(mapped)
            self._logger.debug("Fetched %d signatures for %s (total %d)", len(mapped), address, len(signatures))
            if len(page) < page_limit or not mapped:
                break
            before = mapped[-1]
        return signatures

    def _log_retry(self, state: RetryCallState) -> None:
        self._logger.warning(
            "Rate limited fetching transactions, attempt %d/%d",
            state.attempt_number,
            self._config.max_rate_limit_attempts,
        )

    def get_transactions(self, signatures: Sequence[str]) -> List[Optional[Dict[str, Any]]]:
        """Batch ``getTransaction`` for ``signatures``, preserving their order.

        Entries are ``None`` where the node has no record of the signature.
        """

        if not signatures:
            return []
        retryer = Retrying(
            retry=retry_if_exception_type(RateLimitedError),
            stop=stop_after_attempt(self._config.max_rate_limit_attempts),
            wait=wait_fixed(self._config.rate_limit_wait_seconds),
            before_sleep=self._log_retry,
            reraise=True,
        )
        return retryer(self._get_transactions_once, list(signatures))

    def _get_transactions_once(self, signatures: List[str]) -> List[Optional[Dict[str, Any]]]:
        options = {
            "commitment": self._config.commitment,
            "encoding": "json",
            "maxSupportedTransactionVersion": self._config.max_supported_transaction_version,
        }
        body = [_request("getTransaction", [signature, options]) for signature in signatures]
        payload = self._post(body)
        if isinstance(payload, dict):
            # Some providers reject a whole batch with a single error object.
            self._unwrap(payload, "getTransaction")
            raise ParseError("getTransaction batch returned a single object")
        if not isinstance(payload, list):
            raise ParseError("getTransaction batch response is not a list")
        by_id: Dict[Any, Optional[Dict[str, Any]]] = {}
        for entry in payload:
            if not isinstance(entry, dict):
                raise ParseError("getTransaction batch entry is not an object")
            by_id[entry.get("id")] = self._unwrap(entry, "getTransaction")
        return [by_id.get(request["id"]) for request in body]

    def get_account_info(self, pubkey: str) -> bytes:
        result = self.call(
            "getAccountInfo",
            [validate_address(pubkey), {"encoding": "base64", "commitment": self._config.commitment}],
        )
        value = result.get("value") if isinstance(result, dict) else None
        if not value:
            raise AccountNotFoundError(f"Account {pubkey} not found")
        data = value.get("data")
        if not isinstance(data, list) or not data:
            raise ParseError(f"Account {pubkey} data is not base64 encoded")
        try:
            return base64.b64decode(data[0])
        except (ValueError, TypeError) as exc:
            raise ParseError(f"Account {pubkey} data is not valid base64") from exc

    def get_balance(self, pubkey: str) -> int:
        result = self.call("getBalance", [validate_address(pubkey), {"commitment": self._config.commitment}])
        try:
            return int(result["value"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ParseError("getBalance result has no integer value") from exc

    def get_token_accounts_by_owner(
        self,
        owner: str,
        program_id: str = TOKEN_PROGRAM_ID,
    ) -> List[Dict[str, Any]]:
        result = self.call(
            "getTokenAccountsByOwner",
            [
                validate_address(owner),
                {"programId": program_id},
                {"encoding": "jsonParsed", "commitment": self._config.commitment},
            ],
        )
        value = result.get("value") if isinstance(result, dict) else None
        if not isinstance(value, list):
            raise ParseError("getTokenAccountsByOwner result has no account list")
        return value

    def get_token_decimals(self, mint: str) -> int:
        result = self.call("getTokenSupply", [validate_address(mint), {"commitment": self._config.commitment}])
        try:
            return int(result["value"]["decimals"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ParseError(f"getTokenSupply for {mint} has no decimals") from exc


__all__ = ["SolanaRpcClient"]
