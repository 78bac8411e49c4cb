import pytest

from chainkeeper.state.types import (
    AddressDecodingError,
    EraCbor,
    InvalidStoreVersionError,
    LedgerDelta,
    LedgerError,
    LedgerPoint,
    PParamsBody,
    QueryNotSupportedError,
    StorageError,
    TxoRef,
)
from chainkeeper.wal.model import Era

HASH = b"01010101010101010101010101010101"


def test_txoref_equality_and_hashing():
    refs = {TxoRef(HASH, 0), TxoRef(HASH, 0), TxoRef(HASH, 1)}
    assert len(refs) == 2
    assert TxoRef(bytearray(HASH), 3) == TxoRef(HASH, 3)


def test_txoref_rejects_bad_hash():
    with pytest.raises(ValueError):
        TxoRef(HASH[:31], 0)


def test_txoref_rejects_bad_index():
    with pytest.raises(ValueError):
        TxoRef(HASH, -1)
    with pytest.raises(ValueError):
        TxoRef(HASH, 2**32)


def test_era_cbor_coerces_values():
    body = EraCbor(int(Era.ALONZO), bytearray(b"\x82\x01\x02"))
    assert body.era is Era.ALONZO
    assert body.cbor == b"\x82\x01\x02"
    assert isinstance(body.cbor, bytes) and body == EraCbor(Era.ALONZO, b"\x82\x01\x02")


def test_pparams_body_rejects_unknown_era():
    with pytest.raises(ValueError):
        PParamsBody(0, b"")


def test_ledger_point_validation():
    point = LedgerPoint(1, HASH)
    assert (point.slot, point.hash) == (1, HASH)
    with pytest.raises(ValueError):
        LedgerPoint(-1, HASH)
    with pytest.raises(ValueError):
        LedgerPoint(1, b"short")


def test_ledger_delta_defaults_are_independent():
    first = LedgerDelta()
    second = LedgerDelta()
    first.produced_utxo[TxoRef(HASH, 0)] = EraCbor(Era.BYRON, b"")
    first.new_pparams.append(PParamsBody(Era.SHELLEY, b""))
    assert second.produced_utxo == {}
    assert second.new_pparams == []
    assert second.new_position is None and second.undone_position is None


def test_error_messages():
    assert str(StorageError()) == "storage error"
    assert str(AddressDecodingError()) == "address decoding error"
    assert str(QueryNotSupportedError()) == "query not supported"
    assert str(InvalidStoreVersionError()) == "invalid store version"


def test_error_details_and_hierarchy():
    err = StorageError("disk full")
    assert err.detail == "disk full"
    assert "disk full" in str(err)
    with pytest.raises(LedgerError):
        raise QueryNotSupportedError()