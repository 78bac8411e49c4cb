"""Tables of the ledger state database."""

from __future__ import annotations

import itertools
import sqlite3
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

import cbor2

from ..wal.model import Era
from .outputs import decode_output, split_address
from .types import (
    EraCbor,
    LedgerDelta,
    LedgerPoint,
    PParamsBody,
    TxoRef,
    UtxoMap,
    UtxoSet,
)


def _table_exists(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
    ).fetchone()
    return row is not None


class BlocksTable:
    """Slot to block hash of every block applied."""

    NAME = "blocks"
    _DDL = (
        "CREATE TABLE IF NOT EXISTS blocks "
        "(slot INTEGER PRIMARY KEY, hash BLOB NOT NULL)"
    )

    @staticmethod
    def initialize(conn: sqlite3.Connection) -> None:
        conn.execute(BlocksTable._DDL)

    @staticmethod
    def last(conn: sqlite3.Connection) -> LedgerPoint | None:
        """The latest block, or None if there is none or no table yet."""
        if not _table_exists(conn, BlocksTable.NAME):
            return None
        row = conn.execute(
            "SELECT slot, hash FROM blocks ORDER BY slot DESC LIMIT 1"
        ).fetchone()
        return LedgerPoint(row[0], row[1]) if row else None

    @staticmethod
    def apply(conn: sqlite3.Connection, delta: LedgerDelta) -> None:
        if delta.new_position is not None:
            point = delta.new_position
            conn.execute(
                "INSERT OR REPLACE INTO blocks (slot, hash) VALUES (?, ?)",
                (point.slot, point.hash),
            )
        if delta.undone_position is not None:
            conn.execute("DELETE FROM blocks WHERE slot = ?", (delta.undone_position.slot,))


class UtxosTable:
    """Unspent outputs by reference."""

    NAME = "utxos"
    _DDL = (
        "CREATE TABLE IF NOT EXISTS utxos "
        "(hash BLOB NOT NULL, idx INTEGER NOT NULL, era INTEGER NOT NULL, "
        "cbor BLOB NOT NULL, PRIMARY KEY (hash, idx))"
    )

    @staticmethod
    def initialize(conn: sqlite3.Connection) -> None:
        conn.execute(UtxosTable._DDL)

    @staticmethod
    def iter(conn: sqlite3.Connection) -> Iterator[tuple[TxoRef, EraCbor]]:
        """All outputs, ordered by reference."""
        rows = conn.execute("SELECT hash, idx, era, cbor FROM utxos ORDER BY hash, idx")
        return (
            (TxoRef(hash_, idx), EraCbor(Era(era), cbor)) for hash_, idx, era, cbor in rows
        )

    @staticmethod
    def get_sparse(conn: sqlite3.Connection, refs: Iterable[TxoRef]) -> UtxoMap:
        """The outputs among refs that exist; missing ones are left out."""
        out: UtxoMap = {}
        for ref in refs:
            row = conn.execute(
                "SELECT era, cbor FROM utxos WHERE hash = ? AND idx = ?",
                (ref.hash, ref.index),
            ).fetchone()
            if row is not None:
                out[ref] = EraCbor(Era(row[0]), row[1])
        return out

    @staticmethod
    def apply(conn: sqlite3.Connection, delta: LedgerDelta) -> None:
        conn.executemany(
            "INSERT OR REPLACE INTO utxos (hash, idx, era, cbor) VALUES (?, ?, ?, ?)",
            [
                (ref.hash, ref.index, int(body.era), body.cbor)
                for ref, body in delta.produced_utxo.items()
            ],
        )
        conn.executemany(
            "DELETE FROM utxos WHERE hash = ? AND idx = ?",
            [(ref.hash, ref.index) for ref in delta.undone_utxo],
        )

    @staticmethod
    def compact(conn: sqlite3.Connection, slot: int, tombstones: Iterable[TxoRef]) -> None:
        conn.executemany(
            "DELETE FROM utxos WHERE hash = ? AND idx = ?",
            [(ref.hash, ref.index) for ref in tombstones],
        )

    @staticmethod
    def copy(source: sqlite3.Connection, target: sqlite3.Connection) -> None:
        UtxosTable.initialize(target)
        rows = source.execute("SELECT hash, idx, era, cbor FROM utxos").fetchall()
        target.executemany(
            "INSERT OR REPLACE INTO utxos (hash, idx, era, cbor) VALUES (?, ?, ?, ?)", rows
        )


class PParamsTable:
    """Protocol parameter updates by the slot that carried them."""

    NAME = "pparams"
    _DDL = (
        "CREATE TABLE IF NOT EXISTS pparams "
        "(slot INTEGER PRIMARY KEY, era INTEGER NOT NULL, cbor BLOB NOT NULL)"
    )

    @staticmethod
    def initialize(conn: sqlite3.Connection) -> None:
        conn.execute(PParamsTable._DDL)

    @staticmethod
    def get_range(conn: sqlite3.Connection, until: int) -> list[PParamsBody]:
        """Updates from slots before until, oldest first."""
        rows = conn.execute(
            "SELECT era, cbor FROM pparams WHERE slot < ? ORDER BY slot", (until,)
        )
        return [PParamsBody(Era(era), cbor) for era, cbor in rows]

    @staticmethod
    def apply(conn: sqlite3.Connection, delta: LedgerDelta) -> None:
        if delta.new_position is not None:
            # one entry per slot: a later update of the same slot replaces the earlier
            conn.executemany(
                "INSERT OR REPLACE INTO pparams (slot, era, cbor) VALUES (?, ?, ?)",
                [
                    (delta.new_position.slot, int(body.era), body.cbor)
                    for body in delta.new_pparams
                ],
            )
        if delta.undone_position is not None:
            conn.execute("DELETE FROM pparams WHERE slot = ?", (delta.undone_position.slot,))

    @staticmethod
    def copy(source: sqlite3.Connection, target: sqlite3.Connection) -> None:
        PParamsTable.initialize(target)
        rows = source.execute("SELECT slot, era, cbor FROM pparams").fetchall()
        target.executemany(
            "INSERT OR REPLACE INTO pparams (slot, era, cbor) VALUES (?, ?, ?)", rows
        )


class TombstonesTable:
    """Outputs consumed by each slot, kept until the slot is final."""

    NAME = "tombstones"
    _DDL = (
        "CREATE TABLE IF NOT EXISTS tombstones "
        "(slot INTEGER NOT NULL, hash BLOB NOT NULL, idx INTEGER NOT NULL, "
        "PRIMARY KEY (slot, hash, idx))"
    )

    @staticmethod
    def initialize(conn: sqlite3.Connection) -> None:
        conn.execute(TombstonesTable._DDL)

    @staticmethod
    def get_range(conn: sqlite3.Connection, until: int) -> list[tuple[int, list[TxoRef]]]:
        """Consumed outputs grouped by slot, for slots before until."""
        rows = conn.execute(
            "SELECT slot, hash, idx FROM tombstones WHERE slot < ? ORDER BY slot, hash, idx",
            (until,),
        ).fetchall()
        return [
            (slot, [TxoRef(hash_, idx) for _, hash_, idx in group])
            for slot, group in itertools.groupby(rows, key=lambda row: row[0])
        ]

    @staticmethod
    def apply(conn: sqlite3.Connection, delta: LedgerDelta) -> None:
        if delta.new_position is not None:
            conn.executemany(
                "INSERT OR IGNORE INTO tombstones (slot, hash, idx) VALUES (?, ?, ?)",
                [
                    (delta.new_position.slot, ref.hash, ref.index)
                    for ref in delta.consumed_utxo
                ],
            )
        if delta.undone_position is not None:
            conn.execute(
                "DELETE FROM tombstones WHERE slot = ?", (delta.undone_position.slot,)
            )

    @staticmethod
    def compact(conn: sqlite3.Connection, slot: int, tombstones: Iterable[TxoRef]) -> None:
        conn.execute("DELETE FROM tombstones WHERE slot = ?", (slot,))


@dataclass
class CursorValue:
    """What the cursor table keeps per slot: block hash and consumed outputs."""

    hash: bytes
    tombstones: list[TxoRef] = field(default_factory=list)


def _encode_cursor(value: CursorValue) -> bytes:
    return cbor2.dumps([value.hash, [[ref.hash, ref.index] for ref in value.tombstones]])


def _decode_cursor(data: bytes) -> CursorValue:
    hash_, tombstones = cbor2.loads(data)
    return CursorValue(hash_, [TxoRef(ref_hash, idx) for ref_hash, idx in tombstones])


class CursorTable:
    """Slot to block hash and the outputs that block consumed."""

    NAME = "cursor"
    _DDL = (
        "CREATE TABLE IF NOT EXISTS cursor "
        "(slot INTEGER PRIMARY KEY, value BLOB NOT NULL)"
    )

    @staticmethod
    def initialize(conn: sqlite3.Connection) -> None:
        conn.execute(CursorTable._DDL)

    @staticmethod
    def get_range(conn: sqlite3.Connection, until: int) -> list[tuple[int, CursorValue]]:
        rows = conn.execute(
            "SELECT slot, value FROM cursor WHERE slot < ? ORDER BY slot", (until,)
        )
        return [(slot, _decode_cursor(value)) for slot, value in rows]

    @staticmethod
    def apply(conn: sqlite3.Connection, delta: LedgerDelta) -> None:
        if delta.new_position is not None:
            value = CursorValue(delta.new_position.hash, list(delta.consumed_utxo))
            conn.execute(
                "INSERT OR REPLACE INTO cursor (slot, value) VALUES (?, ?)",
                (delta.new_position.slot, _encode_cursor(value)),
            )
        if delta.undone_position is not None:
            conn.execute("DELETE FROM cursor WHERE slot = ?", (delta.undone_position.slot,))

    @staticmethod
    def compact(conn: sqlite3.Connection, slot: int) -> None:
        conn.execute("DELETE FROM cursor WHERE slot = ?", (slot,))

    @staticmethod
    def copy(source: sqlite3.Connection, target: sqlite3.Connection) -> None:
        CursorTable.initialize(target)
        rows = source.execute("SELECT slot, value FROM cursor").fetchall()
        target.executemany("INSERT OR REPLACE INTO cursor (slot, value) VALUES (?, ?)", rows)

    @staticmethod
    def last(conn: sqlite3.Connection) -> tuple[int, CursorValue] | None:
        row = conn.execute(
            "SELECT slot, value FROM cursor ORDER BY slot DESC LIMIT 1"
        ).fetchone()
        return (row[0], _decode_cursor(row[1])) if row else None


_BY_ADDRESS = "byaddress"
_BY_PAYMENT = "bypayment"
_BY_STAKE = "bystake"
_BY_POLICY = "bypolicy"
_BY_ASSET = "byasset"
_INDEXES = (_BY_ADDRESS, _BY_PAYMENT, _BY_STAKE, _BY_POLICY, _BY_ASSET)


def _index_keys(body: EraCbor) -> Iterator[tuple[str, bytes]]:
    output = decode_output(body)
    split = split_address(output.address)
    yield _BY_ADDRESS, split.address
    if split.payment is not None:
        yield _BY_PAYMENT, split.payment
    if split.delegation is not None:
        yield _BY_STAKE, split.delegation
    for asset in output.assets:
        yield _BY_POLICY, asset.policy
        yield _BY_ASSET, asset.policy + asset.name


class FilterIndexes:
    """Lookups of outputs by address, address parts, policy and asset."""

    NAMES = _INDEXES

    @staticmethod
    def initialize(conn: sqlite3.Connection) -> None:
        for name in _INDEXES:
            conn.execute(
                f"CREATE TABLE IF NOT EXISTS {name} "
                "(key BLOB NOT NULL, hash BLOB NOT NULL, idx INTEGER NOT NULL, "
                "PRIMARY KEY (key, hash, idx))"
            )

    @staticmethod
    def _get_by_key(conn: sqlite3.Connection, name: str, key: bytes) -> UtxoSet:
        rows = conn.execute(f"SELECT hash, idx FROM {name} WHERE key = ?", (bytes(key),))
        return {TxoRef(hash_, idx) for hash_, idx in rows}

    @staticmethod
    def get_by_address(conn: sqlite3.Connection, exact_address: bytes) -> UtxoSet:
        return FilterIndexes._get_by_key(conn, _BY_ADDRESS, exact_address)

    @staticmethod
    def get_by_payment(conn: sqlite3.Connection, payment_part: bytes) -> UtxoSet:
        return FilterIndexes._get_by_key(conn, _BY_PAYMENT, payment_part)

    @staticmethod
    def get_by_stake(conn: sqlite3.Connection, stake_part: bytes) -> UtxoSet:
        return FilterIndexes._get_by_key(conn, _BY_STAKE, stake_part)

    @staticmethod
    def get_by_policy(conn: sqlite3.Connection, policy: bytes) -> UtxoSet:
        return FilterIndexes._get_by_key(conn, _BY_POLICY, policy)

    @staticmethod
    def get_by_asset(conn: sqlite3.Connection, asset: bytes) -> UtxoSet:
        return FilterIndexes._get_by_key(conn, _BY_ASSET, asset)

    @staticmethod
    def apply(conn: sqlite3.Connection, delta: LedgerDelta) -> None:
        trackable = itertools.chain(
            delta.produced_utxo.items(), delta.recovered_stxi.items()
        )
        for ref, body in trackable:
            for name, key in _index_keys(body):
                conn.execute(
                    f"INSERT OR IGNORE INTO {name} (key, hash, idx) VALUES (?, ?, ?)",
                    (key, ref.hash, ref.index),
                )

        forgettable = itertools.chain(delta.consumed_utxo.items(), delta.undone_utxo.items())
        for ref, body in forgettable:
            for name, key in _index_keys(body):
                conn.execute(
                    f"DELETE FROM {name} WHERE key = ? AND hash = ? AND idx = ?",
                    (key, ref.hash, ref.index),
                )

    @staticmethod
    def copy(source: sqlite3.Connection, target: sqlite3.Connection) -> None:
        FilterIndexes.initialize(target)
        for name in _INDEXES:
            rows = source.execute(f"SELECT key, hash, idx FROM {name}").fetchall()
            target.executemany(
                f"INSERT OR IGNORE INTO {name} (key, hash, idx) VALUES (?, ?, ?)", rows
            )