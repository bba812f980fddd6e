"""Pubkey validation and program address helpers."""

from __future__ import annotations

from construct import Adapter, Bytes
from solders.pubkey import Pubkey

from ..exceptions import InvalidAddressError


def parse_pubkey(address: str) -> Pubkey:
    try:
        return Pubkey.from_string(str(address).strip())
    except ValueError as exc:
        raise InvalidAddressError(f"Invalid address: {address!r}") from exc


def validate_address(address: str) -> str:
    """Return the canonical base58 form of ``address`` or raise InvalidAddressError."""

    return str(parse_pubkey(address))


def find_program_address(seeds: list[bytes], program_id: str) -> str:
    address, _bump = Pubkey.find_program_address(seeds, parse_pubkey(program_id))
    return str(address)


class PubkeyAdapter(Adapter):
    """32 raw bytes <-> base58 address string."""

    def _decode(self, obj, context, path):
        return str(Pubkey(bytes(obj)))

    def _encode(self, obj, context, path):
        return bytes(parse_pubkey(obj))


PubkeyField = PubkeyAdapter(Bytes(32))


__all__ = ["PubkeyAdapter", "PubkeyField", "find_program_address", "parse_pubkey", "validate_address"]
