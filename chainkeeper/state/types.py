"""Value types and errors of the ledger state."""

from __future__ import annotations

from dataclasses import dataclass, field

from ..wal.model import HASH_SIZE, Era

_MAX_INDEX = 2**32


class LedgerError(Exception):
    """Base error of the ledger state."""


def _message(base: str, detail: object) -> str:
    return base if detail is None else f"{base}: {detail}"


class StorageError(LedgerError):
    """The underlying storage failed."""

    def __init__(self, detail: object = None) -> None:
        super().__init__(_message("storage error", detail))
        self.detail = detail


class AddressDecodingError(LedgerError):
    """An address could not be decoded."""

    def __init__(self, detail: object = None) -> None:
        super().__init__(_message("address decoding error", detail))
        self.detail = detail


class QueryNotSupportedError(LedgerError):
    def __init__(self) -> None:
        super().__init__("query not supported")


class InvalidStoreVersionError(LedgerError):
    def __init__(self) -> None:
        super().__init__("invalid store version")


def _check_hash(value: bytes) -> bytes:
    value = bytes(value)
    if len(value) != HASH_SIZE:
        raise ValueError(f"hash must be {HASH_SIZE} bytes long")
    return value


@dataclass(frozen=True)
class TxoRef:
    """Reference to a transaction output: transaction hash and output index."""

    hash: bytes
    index: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "hash", _check_hash(self.hash))
        if not 0 <= self.index < _MAX_INDEX:
            raise ValueError("output index out of range")


@dataclass(frozen=True)
class EraCbor:
    """CBOR bytes tagged with the era that gives them meaning."""

    era: Era
    cbor: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "era", Era(self.era))
        object.__setattr__(self, "cbor", bytes(self.cbor))


@dataclass(frozen=True)
class PParamsBody:
    """A protocol parameter update as CBOR, tagged with its era."""

    era: Era
    cbor: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "era", Era(self.era))
        object.__setattr__(self, "cbor", bytes(self.cbor))


@dataclass(frozen=True)
class LedgerPoint:
    """The slot and block hash the ledger state has reached."""

    slot: int
    hash: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "hash", _check_hash(self.hash))
        if self.slot < 0:
            raise ValueError("slot must not be negative")


UtxoMap = dict[TxoRef, EraCbor]
UtxoSet = set[TxoRef]


@dataclass
class LedgerDelta:
    """Changes one block makes to the ledger state, forward or backward."""

    new_position: LedgerPoint | None = None
    undone_position: LedgerPoint | None = None
    produced_utxo: UtxoMap = field(default_factory=dict)
    consumed_utxo: UtxoMap = field(default_factory=dict)
    recovered_stxi: UtxoMap = field(default_factory=dict)
    undone_utxo: UtxoMap = field(default_factory=dict)
    new_pparams: list[PParamsBody] = field(default_factory=list)