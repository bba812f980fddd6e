"""Token metadata resolution behind an explicitly scoped cache."""

from __future__ import annotations

import threading
from typing import Callable, Dict, Iterable, Mapping, Optional

import requests
from construct import ConstructError, Int8ul, Int32ul, PascalString, Struct

from ..config.settings import DataSourceConfig, get_app_config
from ..datalake.schemas import TokenMetadata
from ..exceptions import MirrorError
from ..monitoring.logger import get_logger
from ..utils.constants import SOL_IMAGE, SOL_MINT, TOKEN_METADATA_PROGRAM_ID
from ..utils.pubkeys import PubkeyField, find_program_address, parse_pubkey
from .rpc_client import SolanaRpcClient

MetadataResolver = Callable[[str], Optional[TokenMetadata]]

KNOWN_METADATA: Mapping[str, TokenMetadata] = {
    SOL_MINT: TokenMetadata(name="Solana", symbol="SOL", image=SOL_IMAGE),
}

# Leading fields of a Metaplex token metadata account; the rest is ignored.
METADATA_LAYOUT = Struct(
    "key" / Int8ul,
    "update_authority" / PubkeyField,
    "mint" / PubkeyField,
    "name" / PascalString(Int32ul, "utf8"),
    "symbol" / PascalString(Int32ul, "utf8"),
    "uri" / PascalString(Int32ul, "utf8"),
)


def clean_string(value: str) -> str:
    """Strip the NUL padding and stray quotes on-chain strings carry."""

    return value.strip("\0").strip('"').strip()


def metadata_address(mint: str) -> str:
    program = parse_pubkey(TOKEN_METADATA_PROGRAM_ID)
    return find_program_address([b"metadata", bytes(program), bytes(parse_pubkey(mint))], TOKEN_METADATA_PROGRAM_ID)


class MetaplexMetadataResolver:
    """Reads name and symbol from the mint's metadata account and the image from its JSON uri."""

    def __init__(
        self,
        client: SolanaRpcClient,
        config: Optional[DataSourceConfig] = None,
        session: Optional[requests.Session] = None,
        fetch_images: bool = True,
    ) -> None:
        self._client = client
        self._config = config or get_app_config().data_sources
        self._session = session or requests.Session()
        self._fetch_images = fetch_images
        self._logger = get_logger(__name__)

    def _image(self, uri: str) -> str:
        if not uri or not self._fetch_images:
            return ""
        try:
            response = self._session.get(uri, timeout=self._config.http_timeout)
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            self._logger.debug("Metadata uri %s unavailable: %s", uri, exc)
            return ""
        image = payload.get("image") if isinstance(payload, dict) else None
        return clean_string(str(image)) if image else ""

    def __call__(self, mint: str) -> Optional[TokenMetadata]:
        try:
            data = self._client.get_account_info(metadata_address(mint))
            parsed = METADATA_LAYOUT.parse(data)
        except MirrorError as exc:
            self._logger.debug("No metadata account for %s: %s", mint, exc)
            return None
        except (ConstructError, UnicodeDecodeError) as exc:
            self._logger.warning("Undecodable metadata account for %s: %s", mint, exc)
            return None
        return TokenMetadata(
            name=clean_string(parsed.name),
            symbol=clean_string(parsed.symbol),
            image=self._image(clean_string(parsed.uri)),
        )


class MetadataCache:
    """Insert-if-absent map of mint to :class:`TokenMetadata`.

    Entries are never evicted or overwritten; the first value stored for a
    mint wins. One instance is created per request (or per process) and passed
    to whatever needs it.
    """

    def __init__(
        self,
        resolver: Optional[MetadataResolver] = None,
        seed: Optional[Mapping[str, TokenMetadata]] = None,
    ) -> None:
        self._resolver = resolver
        self._entries: Dict[str, TokenMetadata] = dict(KNOWN_METADATA if seed is None else seed)
        self._lock = threading.Lock()
        self._logger = get_logger(__name__)

    def __contains__(self, mint: object) -> bool:
        with self._lock:
            return mint in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def peek(self, mint: str) -> Optional[TokenMetadata]:
        with self._lock:
            return self._entries.get(mint)

    def insert(self, mint: str, metadata: TokenMetadata) -> TokenMetadata:
        """Store ``metadata`` unless ``mint`` is already cached; return the cached value."""

        with self._lock:
            return self._entries.setdefault(mint, metadata)

    def get(self, mint: str) -> TokenMetadata:
        cached = self.peek(mint)
        if cached is not None:
            return cached
        resolved: Optional[TokenMetadata] = None
        if self._resolver is not None:
            resolved = self._resolver(mint)
        if resolved is None:
            resolved = TokenMetadata()
        return self.insert(mint, resolved)

    def get_many(self, mints: Iterable[str]) -> Dict[str, TokenMetadata]:
        return {mint: self.get(mint) for mint in dict.fromkeys(mints)}


__all__ = [
    "KNOWN_METADATA",
    "METADATA_LAYOUT",
    "MetadataCache",
    "MetadataResolver",
    "MetaplexMetadataResolver",
    "clean_string",
    "metadata_address",
]
