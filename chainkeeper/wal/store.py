"""Write-ahead log kept in an SQLite database."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from os import PathLike

import cbor2

from .model import (
    ChainPoint,
    Era,
    LogAction,
    LogEntry,
    LogValue,
    NotEmptyError,
    RawBlock,
    SlotNotFoundError,
    WalError,
)
from .writer import WalWriter

log = logging.getLogger(__name__)

DEFAULT_CACHE_SIZE_MB = 50
ORIGIN_KEY = -1

_SCHEMA = (
    "CREATE TABLE IF NOT EXISTS wal (seq INTEGER PRIMARY KEY, value BLOB NOT NULL)",
    "CREATE TABLE IF NOT EXISTS pos (slot INTEGER PRIMARY KEY, seq INTEGER NOT NULL)",
)


def _point_key(point: ChainPoint) -> int:
    """Position key of a point; the origin is stored as -1."""
    return ORIGIN_KEY if point.is_origin() else point.slot


def _encode(value: LogValue) -> bytes:
    if value.action is LogAction.MARK:
        point = value.target
        payload = None if point.is_origin() else [point.slot, point.hash]
    else:
        block = value.block
        payload = [block.slot, block.hash, int(block.era), block.body]
    return cbor2.dumps([value.action.value, payload])


def _decode(data: bytes) -> LogValue:
    action_name, payload = cbor2.loads(data)
    action = LogAction(action_name)
    if action is LogAction.MARK:
        if payload is None:
            return LogValue.mark(ChainPoint.origin())
        slot, hash_ = payload
        return LogValue.mark(ChainPoint(slot, hash_))
    slot, hash_, era, body = payload
    return LogValue(action, block=RawBlock(slot, hash_, Era(era), body))


class WalStore(WalWriter):
    """A log of applied, undone and marked blocks, indexed by slot."""

    MAX_PRUNE_SLOTS_PER_HOUSEKEEPING = 10_000

    def __init__(self, conn: sqlite3.Connection, max_slots: int | None = None) -> None:
        self._conn = conn
        self._lock = threading.RLock()
        self._waiters: set[tuple[asyncio.AbstractEventLoop, asyncio.Future]] = set()
        self._waiters_lock = threading.Lock()
        self.max_slots = max_slots

    @classmethod
    def memory(cls, max_slots: int | None = None) -> WalStore:
        """A store that lives in memory only."""
        conn = sqlite3.connect(":memory:", check_same_thread=False)
        return cls(conn, max_slots)

    @classmethod
    def open(
        cls,
        path: str | PathLike,
        cache_size: int | None = None,
        max_slots: int | None = None,
    ) -> WalStore:
        """Open or create a store at path; cache_size is in megabytes."""
        try:
            conn = sqlite3.connect(str(path), check_same_thread=False)
            size_kib = 1024 * (cache_size if cache_size is not None else DEFAULT_CACHE_SIZE_MB)
            conn.execute(f"PRAGMA cache_size = -{int(size_kib)}")
        except sqlite3.Error as exc:
            raise WalError(f"IO error: {exc}") from exc
        return cls(conn, max_slots)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> WalStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                with self._conn:
                    for statement in _SCHEMA:
                        self._conn.execute(statement)
                    yield self._conn
            except sqlite3.Error as exc:
                raise WalError(f"IO error: {exc}") from exc

    def _has_tables(self) -> bool:
        row = self._conn.execute(
            "SELECT COUNT(*) FROM sqlite_master WHERE type = 'table'"
        ).fetchone()
        return row[0] > 0

    def _query(self, sql: str, params: tuple = ()) -> list[tuple]:
        with self._lock:
            try:
                if not self._has_tables():
                    return []
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                raise WalError(f"IO error: {exc}") from exc

    def _entries(self, sql: str, params: tuple = ()) -> Iterator[LogEntry]:
        rows = self._query(sql, params)
        return ((seq, _decode(blob)) for seq, blob in rows)

    def is_empty(self) -> bool:
        """True if nothing but the origin mark has been written."""
        with self._lock:
            if not self._has_tables():
                return True
        tip = self.find_tip()
        return tip is not None and tip[0] == 0

    def initialize_from_origin(self) -> None:
        if not self.is_empty():
            raise NotEmptyError()
        log.info("initializing wal")
        self.append_entries([LogValue.mark(ChainPoint.origin())])

    def remove_range(self, start: int | None, end: int | None) -> None:
        """Remove entries whose sequence lies within [start, end]; None is open."""
        conditions = []
        params: list[int] = []
        if start is not None:
            conditions.append("seq >= ?")
            params.append(start)
        if end is not None:
            conditions.append("seq <= ?")
            params.append(end)
        where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
        with self._transaction() as conn:
            conn.execute(f"DELETE FROM wal{where}", params)
            conn.execute(f"DELETE FROM pos{where}", params)

    def prune_history(self, max_slots: int, max_prune: int | None) -> None:
        """Drop old entries so the log spans at most max_slots slots."""
        start = self.find_start()
        if start is None:
            log.debug("no start point found, skipping housekeeping")
            return
        start_point = start[1]
        start_slot = 0 if start_point.is_origin() else start_point.slot

        tip = self.find_tip()
        if tip is None or tip[1].is_origin():
            log.debug("no tip found, skipping housekeeping")
            return
        last_slot = tip[1].slot

        delta = max(last_slot - start_slot, 0)
        excess = max(delta - max_slots, 0)
        log.debug("wal history delta computed: delta=%s excess=%s", delta, excess)

        if excess == 0:
            log.debug("no pruning necessary")
            return

        to_prune = min(excess, max_prune) if max_prune is not None else excess
        prune_before = start_slot + to_prune
        log.info("pruning wal for excess history, cutoff slot %s", prune_before)

        try:
            self.remove_before(prune_before)
        except SlotNotFoundError:
            log.warning("pruning target slot not found, skipping")

    def housekeeping(self) -> None:
        if self.max_slots is not None:
            log.info("pruning wal for excess history, max slots %s", self.max_slots)
            self.prune_history(self.max_slots, self.MAX_PRUNE_SLOTS_PER_HOUSEKEEPING)

    def approximate_slot(self, target: int, search_range: range) -> int | None:
        """Sequence of the recorded slot in search_range closest below target.

        The last slot of search_range is itself not searched.
        """
        if search_range.step != 1:
            raise ValueError("search range must have a step of 1")
        min_slot = search_range.start
        max_slot = search_range.stop - 1
        rows = self._query(
            "SELECT slot, seq FROM pos WHERE slot >= ? AND slot < ? ORDER BY slot",
            (min_slot, max_slot),
        )
        if not rows:
            return None
        _, seq = min(rows, key=lambda row: target - row[0])
        return seq

    def approximate_slot_with_retry(
        self, target: int, search_range: Callable[[int], range]
    ) -> int | None:
        """Try approximate_slot with ranges built for attempts 1 to 9."""
        for attempt in range(1, 10):
            seq = self.approximate_slot(target, search_range(attempt))
            if seq is not None:
                return seq
        return None

    def remove_before(self, slot: int) -> None:
        """Remove entries older than slot."""
        last_seq = self.approximate_slot_with_retry(
            slot, lambda attempt: range(max(slot - 20 * attempt, 0), slot + 1)
        )
        if last_seq is None:
            raise SlotNotFoundError(slot)
        log.debug("found max sequence to remove: %s", last_seq)
        with self._transaction() as conn:
            conn.execute("DELETE FROM wal WHERE seq < ?", (last_seq,))
            conn.execute("DELETE FROM pos WHERE slot < ?", (slot,))

    async def tip_change(self) -> None:
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        waiter = (loop, future)
        with self._waiters_lock:
            self._waiters.add(waiter)
        try:
            await future
        finally:
            with self._waiters_lock:
                self._waiters.discard(waiter)

    def _notify_waiters(self) -> None:
        with self._waiters_lock:
            waiters = list(self._waiters)
        for loop, future in waiters:
            if not loop.is_closed():
                loop.call_soon_threadsafe(_wake, future)

    def crawl_range(self, start: int, end: int) -> Iterator[LogEntry]:
        return self._entries(
            "SELECT seq, value FROM wal WHERE seq >= ? AND seq <= ? ORDER BY seq",
            (start, end),
        )

    def crawl_from(self, start: int | None) -> Iterator[LogEntry]:
        return self._entries(
            "SELECT seq, value FROM wal WHERE seq >= ? ORDER BY seq",
            (start if start is not None else 0,),
        )

    def crawl_backward(self) -> Iterator[LogEntry]:
        return self._entries("SELECT seq, value FROM wal ORDER BY seq DESC")

    def locate_point(self, point: ChainPoint) -> int | None:
        rows = self._query("SELECT seq FROM pos WHERE slot = ?", (_point_key(point),))
        return rows[0][0] if rows else None

    def append_entries(self, logs: Iterable[LogValue]) -> None:
        with self._transaction() as conn:
            (last,) = conn.execute("SELECT MAX(seq) FROM wal").fetchone()
            next_seq = 0 if last is None else last + 1
            for value in logs:
                key = (
                    _point_key(value.target)
                    if value.action is LogAction.MARK
                    else value.block.slot
                )
                conn.execute(
                    "INSERT OR REPLACE INTO pos (slot, seq) VALUES (?, ?)", (key, next_seq)
                )
                conn.execute(
                    "INSERT INTO wal (seq, value) VALUES (?, ?)", (next_seq, _encode(value))
                )
                next_seq += 1
        self._notify_waiters()


def _wake(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)