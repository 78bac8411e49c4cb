"""Ledger state store that picks its schema from the database it opens."""

from __future__ import annotations

import hashlib
import logging
import sqlite3
from collections.abc import Iterable, Sequence
from os import PathLike

from .schemas import V1Store, V2LightStore, V2Store
from .types import (
    InvalidStoreVersionError,
    LedgerDelta,
    LedgerPoint,
    PParamsBody,
    QueryNotSupportedError,
    StorageError,
    TxoRef,
    UtxoMap,
    UtxoSet,
)

log = logging.getLogger(__name__)

DEFAULT_CACHE_SIZE_MB = 500

V1_HASH = "067c3397778523b67202fa0ea720ef4d2c091e30"
V2_HASH = "eff59f15f18250d950120494c8bcb9b13575057a"
V2_LIGHT_HASH = "788921eb9af899359a257c49f4f8092c99886076"

_SCHEMA_NAMES = {V1Store: "v1", V2Store: "v2", V2LightStore: "v2-light"}


def compute_schema_hash(conn: sqlite3.Connection) -> str | None:
    """A hash of the sorted table names, or None if the database has no tables."""
    try:
        rows = conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table'"
        ).fetchall()
    except sqlite3.Error as exc:
        raise StorageError(exc) from exc

    names = sorted(name for (name,) in rows if not name.startswith("sqlite_"))
    log.debug("table names used to compute hash: %s", names)

    if not names:
        return None

    hasher = hashlib.blake2b(digest_size=20)
    for name in names:
        hasher.update(name.encode())
    return hasher.hexdigest()


def _connect(path: str | PathLike, cache_size: int | None) -> sqlite3.Connection:
    try:
        conn = sqlite3.connect(str(path), check_same_thread=False)
        size_kib = 1024 * (cache_size if cache_size is not None else DEFAULT_CACHE_SIZE_MB)
        conn.execute(f"PRAGMA cache_size = -{int(size_kib)}")
    except sqlite3.Error as exc:
        raise StorageError(exc) from exc
    return conn


def _memory() -> sqlite3.Connection:
    return sqlite3.connect(":memory:", check_same_thread=False)


class LedgerStore:
    """A persistent ledger state over one of the supported schemas."""

    def __init__(self, inner: V1Store | V2Store | V2LightStore) -> None:
        self._inner = inner

    @classmethod
    def open(cls, path: str | PathLike, cache_size: int | None = None) -> LedgerStore:
        """Open a database, detecting its schema; a new one is set up as v2."""
        conn = _connect(path, cache_size)
        hash_ = compute_schema_hash(conn)

        if hash_ is None:
            log.info("no state db schema, initializing as v2")
            return cls(V2Store.initialize(conn))
        if hash_ == V1_HASH:
            log.info("detected state db schema v1")
            return cls(V1Store(conn))
        if hash_ == V2_HASH:
            log.info("detected state db schema v2")
            return cls(V2Store(conn))
        if hash_ == V2_LIGHT_HASH:
            log.info("detected state db schema v2-light")
            return cls(V2LightStore(conn))

        conn.close()
        log.error("can't recognize db hash %s", hash_)
        raise InvalidStoreVersionError()

    @classmethod
    def open_v2_light(
        cls, path: str | PathLike, cache_size: int | None = None
    ) -> LedgerStore:
        """Open a v2-light database, setting it up if new; other schemas are refused."""
        conn = _connect(path, cache_size)
        hash_ = compute_schema_hash(conn)

        if hash_ is None:
            log.info("no state db schema, initializing as v2-light")
            return cls(V2LightStore.initialize(conn))
        if hash_ == V2_LIGHT_HASH:
            log.info("detected state db schema v2-light")
            return cls(V2LightStore(conn))

        conn.close()
        raise InvalidStoreVersionError()

    @classmethod
    def in_memory_v1(cls) -> LedgerStore:
        return cls(V1Store.initialize(_memory()))

    @classmethod
    def in_memory_v2(cls) -> LedgerStore:
        return cls(V2Store.initialize(_memory()))

    @classmethod
    def in_memory_v2_light(cls) -> LedgerStore:
        return cls(V2LightStore.initialize(_memory()))

    @property
    def schema(self) -> str:
        """Name of the schema in use: v1, v2 or v2-light."""
        return _SCHEMA_NAMES[type(self._inner)]

    def connection(self) -> sqlite3.Connection:
        """The database connection underneath."""
        return self._inner.conn

    def close(self) -> None:
        self._inner.conn.close()

    def __enter__(self) -> LedgerStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def cursor(self) -> LedgerPoint | None:
        return self._inner.cursor()

    def is_empty(self) -> bool:
        return self._inner.is_empty()

    def get_pparams(self, until: int) -> list[PParamsBody]:
        return self._inner.get_pparams(until)

    def get_utxos(self, refs: Sequence[TxoRef]) -> UtxoMap:
        return self._inner.get_utxos(refs)

    def _indexed(self) -> V2Store:
        if not isinstance(self._inner, V2Store):
            raise QueryNotSupportedError()
        return self._inner

    def get_utxo_by_address(self, address: bytes) -> UtxoSet:
        return self._indexed().get_utxos_by_address(address)

    def get_utxo_by_payment(self, payment: bytes) -> UtxoSet:
        return self._indexed().get_utxos_by_payment(payment)

    def get_utxo_by_stake(self, stake: bytes) -> UtxoSet:
        return self._indexed().get_utxos_by_stake(stake)

    def get_utxo_by_policy(self, policy: bytes) -> UtxoSet:
        return self._indexed().get_utxos_by_policy(policy)

    def get_utxo_by_asset(self, asset: bytes) -> UtxoSet:
        return self._indexed().get_utxos_by_asset(asset)

    def apply(self, deltas: Iterable[LedgerDelta]) -> None:
        self._inner.apply(deltas)

    def finalize(self, until: int) -> None:
        self._inner.finalize(until)

    def upgrade(self) -> LedgerStore:
        """Turn a v2-light store into a v2 store by building its indexes."""
        if not isinstance(self._inner, V2LightStore):
            raise InvalidStoreVersionError()
        conn = self._inner.upgrade()
        return LedgerStore(V2Store(conn))

    def copy(self, target: LedgerStore) -> None:
        """Copy this store's data into a target of the same schema."""
        source, dest = self._inner, target._inner
        if isinstance(source, V2Store) and isinstance(dest, V2Store):
            source.copy(dest)
        elif isinstance(source, V2LightStore) and isinstance(dest, V2LightStore):
            source.copy(dest)
        else:
            raise InvalidStoreVersionError()