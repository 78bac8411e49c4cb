"""Ledger state stores, one per database schema."""

from __future__ import annotations

import itertools
import sqlite3
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager

from . import tables
from .types import (
    LedgerDelta,
    LedgerPoint,
    PParamsBody,
    StorageError,
    TxoRef,
    UtxoMap,
    UtxoSet,
)

UPGRADE_CHUNK_SIZE = 1000

_V1_TABLES = (
    tables.UtxosTable,
    tables.PParamsTable,
    tables.TombstonesTable,
    tables.BlocksTable,
)
_V2_TABLES = (
    tables.CursorTable,
    tables.UtxosTable,
    tables.PParamsTable,
    tables.FilterIndexes,
)
_V2_LIGHT_TABLES = (tables.CursorTable, tables.UtxosTable, tables.PParamsTable)


@contextmanager
def _reading(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    try:
        yield conn
    except sqlite3.Error as exc:
        raise StorageError(exc) from exc


@contextmanager
def _writing(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """A write transaction: committed on success, rolled back on any error."""
    try:
        with conn:
            yield conn
    except sqlite3.Error as exc:
        raise StorageError(exc) from exc


def _initialize(conn: sqlite3.Connection, schema: tuple) -> None:
    with _writing(conn):
        for table in schema:
            table.initialize(conn)


def _apply(conn: sqlite3.Connection, schema: tuple, deltas: Iterable[LedgerDelta]) -> None:
    with _writing(conn):
        for delta in deltas:
            for table in schema:
                table.apply(conn, delta)


def _get_utxos(conn: sqlite3.Connection, refs: Sequence[TxoRef]) -> UtxoMap:
    refs = list(refs)
    if not refs:
        return {}
    with _reading(conn):
        return tables.UtxosTable.get_sparse(conn, refs)


def _get_pparams(conn: sqlite3.Connection, until: int) -> list[PParamsBody]:
    with _reading(conn):
        return tables.PParamsTable.get_range(conn, until)


def _cursor_from_table(conn: sqlite3.Connection) -> LedgerPoint | None:
    with _reading(conn):
        last = tables.CursorTable.last(conn)
    if last is None:
        return None
    slot, value = last
    return LedgerPoint(slot, value.hash)


def _finalize_cursors(conn: sqlite3.Connection, until: int) -> None:
    with _reading(conn):
        cursors = tables.CursorTable.get_range(conn, until)
    with _writing(conn):
        for slot, value in cursors:
            tables.CursorTable.compact(conn, slot)
            tables.UtxosTable.compact(conn, slot, value.tombstones)


def _copy(source: sqlite3.Connection, target: sqlite3.Connection, schema: tuple) -> None:
    with _writing(target):
        for table in schema:
            table.copy(source, target)


class V1Store:
    """Schema with a blocks table and per-slot tombstones."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    @classmethod
    def initialize(cls, conn: sqlite3.Connection) -> V1Store:
        """Create the schema's tables on conn and return a store over it."""
        _initialize(conn, _V1_TABLES)
        return cls(conn)

    def is_empty(self) -> bool:
        return self.cursor() is None

    def cursor(self) -> LedgerPoint | None:
        with _reading(self.conn) as conn:
            return tables.BlocksTable.last(conn)

    def apply(self, deltas: Iterable[LedgerDelta]) -> None:
        _apply(self.conn, _V1_TABLES, deltas)

    def finalize(self, until: int) -> None:
        """Drop outputs consumed in slots before until."""
        with _reading(self.conn) as conn:
            tombstones = tables.TombstonesTable.get_range(conn, until)
        with _writing(self.conn) as conn:
            for slot, refs in tombstones:
                tables.UtxosTable.compact(conn, slot, refs)
                tables.TombstonesTable.compact(conn, slot, refs)

    def get_utxos(self, refs: Sequence[TxoRef]) -> UtxoMap:
        return _get_utxos(self.conn, refs)

    def get_pparams(self, until: int) -> list[PParamsBody]:
        return _get_pparams(self.conn, until)


class V2Store:
    """Schema with a cursor table and filter indexes."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    @classmethod
    def initialize(cls, conn: sqlite3.Connection) -> V2Store:
        """Create the schema's tables on conn and return a store over it."""
        _initialize(conn, _V2_TABLES)
        return cls(conn)

    def is_empty(self) -> bool:
        return self.cursor() is None

    def cursor(self) -> LedgerPoint | None:
        return _cursor_from_table(self.conn)

    def apply(self, deltas: Iterable[LedgerDelta]) -> None:
        _apply(self.conn, _V2_TABLES, deltas)

    def finalize(self, until: int) -> None:
        """Drop cursor entries before until and the outputs they consumed."""
        _finalize_cursors(self.conn, until)

    def copy(self, target: V2Store) -> None:
        """Copy every table of this store into target."""
        _copy(self.conn, target.conn, _V2_TABLES)

    def get_utxos(self, refs: Sequence[TxoRef]) -> UtxoMap:
        return _get_utxos(self.conn, refs)

    def get_pparams(self, until: int) -> list[PParamsBody]:
        return _get_pparams(self.conn, until)

    def get_utxos_by_address(self, address: bytes) -> UtxoSet:
        with _reading(self.conn) as conn:
            return tables.FilterIndexes.get_by_address(conn, address)

    def get_utxos_by_payment(self, payment: bytes) -> UtxoSet:
        with _reading(self.conn) as conn:
            return tables.FilterIndexes.get_by_payment(conn, payment)

    def get_utxos_by_stake(self, stake: bytes) -> UtxoSet:
        with _reading(self.conn) as conn:
            return tables.FilterIndexes.get_by_stake(conn, stake)

    def get_utxos_by_policy(self, policy: bytes) -> UtxoSet:
        with _reading(self.conn) as conn:
            return tables.FilterIndexes.get_by_policy(conn, policy)

    def get_utxos_by_asset(self, asset: bytes) -> UtxoSet:
        with _reading(self.conn) as conn:
            return tables.FilterIndexes.get_by_asset(conn, asset)


class V2LightStore:
    """The cursor schema without filter indexes."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    @classmethod
    def initialize(cls, conn: sqlite3.Connection) -> V2LightStore:
        """Create the schema's tables on conn and return a store over it."""
        _initialize(conn, _V2_LIGHT_TABLES)
        return cls(conn)

    def is_empty(self) -> bool:
        return self.cursor() is None

    def cursor(self) -> LedgerPoint | None:
        return _cursor_from_table(self.conn)

    def apply(self, deltas: Iterable[LedgerDelta]) -> None:
        _apply(self.conn, _V2_LIGHT_TABLES, deltas)

    def finalize(self, until: int) -> None:
        """Drop cursor entries before until and the outputs they consumed."""
        _finalize_cursors(self.conn, until)

    def copy(self, target: V2LightStore) -> None:
        """Copy every table of this store into target."""
        _copy(self.conn, target.conn, _V2_LIGHT_TABLES)

    def get_utxos(self, refs: Sequence[TxoRef]) -> UtxoMap:
        return _get_utxos(self.conn, refs)

    def get_pparams(self, until: int) -> list[PParamsBody]:
        return _get_pparams(self.conn, until)

    def upgrade(self) -> sqlite3.Connection:
        """Build the filter indexes and return the connection, now of schema v2."""
        with _writing(self.conn) as conn:
            tables.FilterIndexes.initialize(conn)
            utxos = tables.UtxosTable.iter(conn)
            while chunk := list(itertools.islice(utxos, UPGRADE_CHUNK_SIZE)):
                tables.FilterIndexes.apply(conn, LedgerDelta(produced_utxo=dict(chunk)))
        return self.conn