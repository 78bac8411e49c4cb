"""Core value types of the write-ahead log."""

from __future__ import annotations

import enum
import hashlib
from dataclasses import dataclass

HASH_SIZE = 32


class Era(enum.IntEnum):
    """Ledger era a block belongs to."""

    BYRON = 1
    SHELLEY = 2
    ALLEGRA = 3
    MARY = 4
    ALONZO = 5
    BABBAGE = 6
    CONWAY = 7


@dataclass(frozen=True)
class ChainPoint:
    """A position on the chain: either the origin or a specific slot and hash."""

    slot: int | None = None
    hash: bytes | None = None

    def __post_init__(self) -> None:
        if (self.slot is None) != (self.hash is None):
            raise ValueError("a chain point needs both a slot and a hash, or neither")
        if self.hash is not None:
            if len(self.hash) != HASH_SIZE:
                raise ValueError(f"block hash must be {HASH_SIZE} bytes long")
            object.__setattr__(self, "hash", bytes(self.hash))
        if self.slot is not None and self.slot < 0:
            raise ValueError("slot must not be negative")

    @classmethod
    def origin(cls) -> ChainPoint:
        """The point before the first block."""
        return cls()

    def is_origin(self) -> bool:
        return self.slot is None

    def __repr__(self) -> str:
        if self.is_origin():
            return "ChainPoint.origin()"
        return f"ChainPoint({self.slot}, {self.hash.hex()})"


@dataclass(frozen=True)
class RawBlock:
    """A block as stored in the log: its position, era and raw body."""

    slot: int
    hash: bytes
    era: Era
    body: bytes

    def __post_init__(self) -> None:
        if len(self.hash) != HASH_SIZE:
            raise ValueError(f"block hash must be {HASH_SIZE} bytes long")
        object.__setattr__(self, "hash", bytes(self.hash))
        object.__setattr__(self, "body", bytes(self.body))
        object.__setattr__(self, "era", Era(self.era))

    def point(self) -> ChainPoint:
        return ChainPoint(self.slot, self.hash)


class LogAction(enum.Enum):
    """Kind of a log entry."""

    APPLY = "apply"
    UNDO = "undo"
    MARK = "mark"


@dataclass(frozen=True)
class LogValue:
    """One entry of the log: a block applied or undone, or a mark at a point."""

    action: LogAction
    block: RawBlock | None = None
    target: ChainPoint | None = None

    def __post_init__(self) -> None:
        if self.action is LogAction.MARK:
            if self.target is None or self.block is not None:
                raise ValueError("a mark carries a chain point and no block")
        elif self.block is None or self.target is not None:
            raise ValueError(f"an {self.action.value} entry carries a block and no point")

    @classmethod
    def apply(cls, block: RawBlock) -> LogValue:
        return cls(LogAction.APPLY, block=block)

    @classmethod
    def undo(cls, block: RawBlock) -> LogValue:
        return cls(LogAction.UNDO, block=block)

    @classmethod
    def mark(cls, point: ChainPoint) -> LogValue:
        return cls(LogAction.MARK, target=point)

    def point(self) -> ChainPoint:
        """The chain point this entry refers to."""
        if self.block is not None:
            return self.block.point()
        return self.target


LogEntry = tuple[int, LogValue]


class WalError(Exception):
    """Base error of the write-ahead log."""


class NotEmptyError(WalError):
    def __init__(self) -> None:
        super().__init__("wal is not empty")


class PointNotFoundError(WalError):
    def __init__(self, point: ChainPoint) -> None:
        super().__init__(f"point not found in chain {point!r}")
        self.point = point


class SlotNotFoundError(WalError):
    def __init__(self, slot: int) -> None:
        super().__init__(f"slot not found in chain {slot}")
        self.slot = slot


def slot_to_hash(slot: int) -> bytes:
    """A deterministic 32-byte hash for a slot, used for synthetic blocks."""
    data = (slot & 0xFFFFFFFF).to_bytes(4, "little")
    return hashlib.blake2b(data, digest_size=HASH_SIZE).digest()