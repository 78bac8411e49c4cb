import sqlite3

import cbor2
import pytest

from chainkeeper.state.tables import (
    BlocksTable,
    CursorTable,
    CursorValue,
    FilterIndexes,
    PParamsTable,
    TombstonesTable,
    UtxosTable,
)
from chainkeeper.state.types import (
    AddressDecodingError,
    EraCbor,
    LedgerDelta,
    LedgerPoint,
    PParamsBody,
    TxoRef,
)
from chainkeeper.wal.model import Era

PAYMENT = bytes(range(1, 29))
STAKE = bytes(range(101, 129))
BASE_ADDRESS = b"\x01" + PAYMENT + STAKE
POLICY = b"\x07" * 28
ASSET_NAME = b"coin"


def h(n):
    return bytes([n]) * 32


def output(address=BASE_ADDRESS, coin=1_000_000):
    value = [coin, {POLICY: {ASSET_NAME: 5}}]
    return EraCbor(Era.BABBAGE, cbor2.dumps({0: address, 1: value}))


@pytest.fixture
def conn():
    connection = sqlite3.connect(":memory:")
    yield connection
    connection.close()


def test_blocks_last_without_table(conn):
    assert BlocksTable.last(conn) is None


def test_blocks_apply_and_undo(conn):
    BlocksTable.initialize(conn)
    BlocksTable.apply(conn, LedgerDelta(new_position=LedgerPoint(5, h(1))))
    BlocksTable.apply(conn, LedgerDelta(new_position=LedgerPoint(9, h(2))))
    assert BlocksTable.last(conn) == LedgerPoint(9, h(2))

    BlocksTable.apply(conn, LedgerDelta(undone_position=LedgerPoint(9, h(2))))
    assert BlocksTable.last(conn) == LedgerPoint(5, h(1))


def test_utxos_apply_and_get_sparse(conn):
    UtxosTable.initialize(conn)
    a, b = TxoRef(h(1), 0), TxoRef(h(1), 1)
    UtxosTable.apply(conn, LedgerDelta(produced_utxo={a: output(), b: output(coin=7)}))

    found = UtxosTable.get_sparse(conn, [a, TxoRef(h(9), 0)])
    assert found == {a: output()}


def test_utxos_undone_are_removed(conn):
    UtxosTable.initialize(conn)
    a = TxoRef(h(1), 0)
    UtxosTable.apply(conn, LedgerDelta(produced_utxo={a: output()}))
    UtxosTable.apply(conn, LedgerDelta(undone_utxo={a: output()}))
    assert UtxosTable.get_sparse(conn, [a]) == {}


def test_utxos_compact_removes_tombstones(conn):
    UtxosTable.initialize(conn)
    a, b = TxoRef(h(1), 0), TxoRef(h(2), 0)
    UtxosTable.apply(conn, LedgerDelta(produced_utxo={a: output(), b: output()}))
    UtxosTable.compact(conn, 10, [a])
    assert UtxosTable.get_sparse(conn, [a, b]) == {b: output()}


def test_utxos_iter_is_ordered_by_reference(conn):
    UtxosTable.initialize(conn)
    refs = [TxoRef(h(3), 0), TxoRef(h(1), 2), TxoRef(h(1), 0)]
    UtxosTable.apply(conn, LedgerDelta(produced_utxo={ref: output() for ref in refs}))

    keys = [ref for ref, _ in UtxosTable.iter(conn)]
    assert keys == sorted(refs, key=lambda r: (r.hash, r.index))


def test_utxos_missing_table_is_an_error(conn):
    with pytest.raises(sqlite3.OperationalError):
        UtxosTable.get_sparse(conn, [TxoRef(h(1), 0)])


def test_utxos_copy(conn):
    UtxosTable.initialize(conn)
    a = TxoRef(h(1), 0)
    UtxosTable.apply(conn, LedgerDelta(produced_utxo={a: output()}))
    target = sqlite3.connect(":memory:")
    UtxosTable.copy(conn, target)
    assert UtxosTable.get_sparse(target, [a]) == {a: output()}


def test_pparams_range_excludes_until(conn):
    PParamsTable.initialize(conn)
    first = PParamsBody(Era.SHELLEY, b"\x01")
    second = PParamsBody(Era.ALONZO, b"\x02")
    PParamsTable.apply(conn, LedgerDelta(new_position=LedgerPoint(10, h(1)), new_pparams=[first]))
    PParamsTable.apply(conn, LedgerDelta(new_position=LedgerPoint(20, h(2)), new_pparams=[second]))

    assert PParamsTable.get_range(conn, 20) == [first]
    assert PParamsTable.get_range(conn, 21) == [first, second]


def test_pparams_undo_and_copy(conn):
    PParamsTable.initialize(conn)
    body = PParamsBody(Era.BABBAGE, b"\x05")
    PParamsTable.apply(conn, LedgerDelta(new_position=LedgerPoint(3, h(3)), new_pparams=[body]))
    target = sqlite3.connect(":memory:")
    PParamsTable.copy(conn, target)
    assert PParamsTable.get_range(target, 100) == [body]

    PParamsTable.apply(conn, LedgerDelta(undone_position=LedgerPoint(3, h(3))))
    assert PParamsTable.get_range(conn, 100) == []


def test_tombstones_grouped_by_slot(conn):
    TombstonesTable.initialize(conn)
    a, b, c = TxoRef(h(2), 0), TxoRef(h(1), 0), TxoRef(h(5), 1)
    TombstonesTable.apply(
        conn,
        LedgerDelta(new_position=LedgerPoint(3, h(3)), consumed_utxo={a: output(), b: output()}),
    )
    TombstonesTable.apply(
        conn, LedgerDelta(new_position=LedgerPoint(7, h(7)), consumed_utxo={c: output()})
    )

    assert TombstonesTable.get_range(conn, 7) == [(3, [b, a])]

    TombstonesTable.compact(conn, 3, [a, b])
    assert TombstonesTable.get_range(conn, 100) == [(7, [c])]

    TombstonesTable.apply(conn, LedgerDelta(undone_position=LedgerPoint(7, h(7))))
    assert TombstonesTable.get_range(conn, 100) == []


def test_cursor_round_trip(conn):
    CursorTable.initialize(conn)
    a = TxoRef(h(1), 4)
    CursorTable.apply(
        conn, LedgerDelta(new_position=LedgerPoint(4, h(4)), consumed_utxo={a: output()})
    )

    assert CursorTable.last(conn) == (4, CursorValue(h(4), [a]))
    assert CursorTable.get_range(conn, 4) == []
    assert CursorTable.get_range(conn, 5) == [(4, CursorValue(h(4), [a]))]

    target = sqlite3.connect(":memory:")
    CursorTable.copy(conn, target)
    assert CursorTable.last(target) == CursorTable.last(conn)

    CursorTable.compact(conn, 4)
    assert CursorTable.last(conn) is None


def test_cursor_undo(conn):
    CursorTable.initialize(conn)
    CursorTable.apply(conn, LedgerDelta(new_position=LedgerPoint(1, h(1))))
    CursorTable.apply(conn, LedgerDelta(new_position=LedgerPoint(2, h(2))))
    CursorTable.apply(conn, LedgerDelta(undone_position=LedgerPoint(2, h(2))))
    assert CursorTable.last(conn) == (1, CursorValue(h(1), []))


def test_filter_indexes_track_produced_outputs(conn):
    FilterIndexes.initialize(conn)
    a = TxoRef(h(1), 0)
    FilterIndexes.apply(conn, LedgerDelta(produced_utxo={a: output()}))

    assert FilterIndexes.get_by_address(conn, BASE_ADDRESS) == {a}
    assert FilterIndexes.get_by_payment(conn, PAYMENT) == {a}
    assert FilterIndexes.get_by_stake(conn, STAKE) == {a}
    assert FilterIndexes.get_by_policy(conn, POLICY) == {a}
    assert FilterIndexes.get_by_asset(conn, POLICY + ASSET_NAME) == {a}
    assert FilterIndexes.get_by_asset(conn, ASSET_NAME) == set()


def test_filter_indexes_forget_consumed_outputs(conn):
    FilterIndexes.initialize(conn)
    a, b = TxoRef(h(1), 0), TxoRef(h(2), 0)
    FilterIndexes.apply(conn, LedgerDelta(produced_utxo={a: output()}, recovered_stxi={b: output()}))
    assert FilterIndexes.get_by_payment(conn, PAYMENT) == {a, b}

    FilterIndexes.apply(conn, LedgerDelta(consumed_utxo={a: output()}, undone_utxo={b: output()}))
    assert FilterIndexes.get_by_address(conn, BASE_ADDRESS) == set()
    assert FilterIndexes.get_by_policy(conn, POLICY) == set()


def test_filter_indexes_reject_bad_address(conn):
    FilterIndexes.initialize(conn)
    bad = output(address=b"\x01\x02")
    with pytest.raises(AddressDecodingError):
        FilterIndexes.apply(conn, LedgerDelta(produced_utxo={TxoRef(h(1), 0): bad}))


def test_filter_indexes_copy(conn):
    FilterIndexes.initialize(conn)
    a = TxoRef(h(1), 0)
    FilterIndexes.apply(conn, LedgerDelta(produced_utxo={a: output()}))
    target = sqlite3.connect(":memory:")
    FilterIndexes.copy(conn, target)
    assert FilterIndexes.get_by_stake(target, STAKE) == {a}
    assert FilterIndexes.get_by_asset(target, POLICY + ASSET_NAME) == {a}