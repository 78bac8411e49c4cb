"""Decoding of transaction outputs and addresses for the ledger indexes."""

from __future__ import annotations

from dataclasses import dataclass

import cbor2

from ..wal.model import Era
from .types import AddressDecodingError, EraCbor

ADDRESS_HASH_SIZE = 28
_SHELLEY_BASE_SIZE = 1 + ADDRESS_HASH_SIZE
_SHELLEY_FULL_SIZE = 1 + 2 * ADDRESS_HASH_SIZE


@dataclass(frozen=True)
class Asset:
    """A native asset amount held by an output."""

    policy: bytes
    name: bytes
    amount: int


@dataclass(frozen=True)
class ParsedOutput:
    """The parts of a transaction output the ledger indexes use."""

    era: Era
    address: bytes
    coin: int
    assets: tuple[Asset, ...] = ()


@dataclass(frozen=True)
class SplitAddress:
    """An address with its payment and delegation parts, where it has them."""

    address: bytes
    payment: bytes | None
    delegation: bytes | None


def _decode_assets(multiasset: object) -> tuple[Asset, ...]:
    if not isinstance(multiasset, dict):
        raise ValueError("invalid multi-asset value")
    assets = []
    for policy, names in multiasset.items():
        if not isinstance(policy, bytes) or not isinstance(names, dict):
            raise ValueError("invalid multi-asset entry")
        for name, amount in names.items():
            if not isinstance(name, bytes) or not isinstance(amount, int):
                raise ValueError("invalid asset entry")
            assets.append(Asset(policy, name, amount))
    return tuple(assets)


def _decode_value(value: object) -> tuple[int, tuple[Asset, ...]]:
    if isinstance(value, int) and not isinstance(value, bool):
        return value, ()
    if isinstance(value, list) and len(value) == 2 and isinstance(value[0], int):
        return value[0], _decode_assets(value[1])
    raise ValueError("invalid output value")


def decode_output(body: EraCbor) -> ParsedOutput:
    """Decode the CBOR of a transaction output of any era.

    Raises ValueError if the bytes are not a transaction output.
    """
    try:
        item = cbor2.loads(body.cbor)
    except (cbor2.CBORDecodeError, ValueError) as exc:
        raise ValueError(f"invalid transaction output: {exc}") from exc

    if isinstance(item, dict):
        address, value = item.get(0), item.get(1)
    elif isinstance(item, list) and len(item) >= 2:
        address, value = item[0], item[1]
        if isinstance(address, list):
            # byron outputs carry the address as a CBOR structure
            address = cbor2.dumps(address)
    else:
        raise ValueError("invalid transaction output")

    if not isinstance(address, bytes):
        raise ValueError("invalid output address")

    coin, assets = _decode_value(value)
    return ParsedOutput(body.era, address, coin, assets)


def _check_pointer(data: bytes) -> None:
    """Check that data holds exactly three variable-length integers."""
    count = 0
    pending = False
    for byte in data:
        pending = bool(byte & 0x80)
        if not pending:
            count += 1
    if pending or count != 3:
        raise AddressDecodingError("invalid pointer")


def _split_shelley(address: bytes, kind: int) -> SplitAddress:
    if len(address) < _SHELLEY_BASE_SIZE:
        raise AddressDecodingError("address too short")
    payment = address[1:_SHELLEY_BASE_SIZE]

    if kind <= 3:
        if len(address) != _SHELLEY_FULL_SIZE:
            raise AddressDecodingError("invalid base address length")
        delegation = address[_SHELLEY_BASE_SIZE:]
    elif kind <= 5:
        delegation = address[_SHELLEY_BASE_SIZE:]
        _check_pointer(delegation)
    else:
        if len(address) != _SHELLEY_BASE_SIZE:
            raise AddressDecodingError("invalid enterprise address length")
        delegation = b""

    return SplitAddress(address, payment, delegation)


def split_address(address: bytes) -> SplitAddress:
    """Split raw address bytes into the keys the filter indexes use."""
    address = bytes(address)
    if not address:
        raise AddressDecodingError("empty address")

    kind = address[0] >> 4

    if kind <= 7:
        return _split_shelley(address, kind)

    if kind == 8:
        try:
            decoded = cbor2.loads(address)
        except (cbor2.CBORDecodeError, ValueError) as exc:
            raise AddressDecodingError(exc) from exc
        if not isinstance(decoded, list) or len(decoded) != 2:
            raise AddressDecodingError("invalid byron address")
        return SplitAddress(address, None, None)

    if kind in (14, 15):
        if len(address) != _SHELLEY_BASE_SIZE:
            raise AddressDecodingError("invalid stake address length")
        return SplitAddress(address, None, address)

    raise AddressDecodingError(f"unknown address header {kind}")