"""Read access to the write-ahead log."""

from __future__ import annotations

import itertools
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator, Sequence

from .model import ChainPoint, LogAction, LogEntry, PointNotFoundError, RawBlock


def filter_apply(entries: Iterable[LogEntry]) -> Iterator[LogEntry]:
    """Keep only entries that apply a block."""
    return (entry for entry in entries if entry[1].action is LogAction.APPLY)


def filter_forward(entries: Iterable[LogEntry]) -> Iterator[LogEntry]:
    """Keep entries that move the chain forward: applies and marks."""
    return (
        entry
        for entry in entries
        if entry[1].action in (LogAction.APPLY, LogAction.MARK)
    )


def into_blocks(entries: Iterable[LogEntry]) -> Iterator[RawBlock | None]:
    """Map entries to the block they carry, or None for marks."""
    return (value.block for _, value in entries)


def _blocks(entries: Iterable[LogEntry]) -> Iterator[RawBlock]:
    return (block for block in into_blocks(entries) if block is not None)


class WalReader(ABC):
    """Read operations over a log; subclasses supply the storage primitives."""

    @abstractmethod
    async def tip_change(self) -> None:
        """Wait until new entries are appended."""

    @abstractmethod
    def crawl_range(self, start: int, end: int) -> Iterator[LogEntry]:
        """Entries with sequence numbers from start to end, both included."""

    @abstractmethod
    def crawl_from(self, start: int | None) -> Iterator[LogEntry]:
        """Entries from a sequence number onwards, or from the beginning."""

    @abstractmethod
    def crawl_backward(self) -> Iterator[LogEntry]:
        """All entries, newest first."""

    @abstractmethod
    def locate_point(self, point: ChainPoint) -> int | None:
        """The sequence number recorded for a chain point, if any."""

    def assert_point(self, point: ChainPoint) -> int:
        """Like locate_point, but raise PointNotFoundError if missing."""
        seq = self.locate_point(point)
        if seq is None:
            raise PointNotFoundError(point)
        return seq

    def find_start(self) -> tuple[int, ChainPoint] | None:
        for seq, value in filter_forward(self.crawl_from(None)):
            return seq, value.point()
        return None

    def find_tip(self) -> tuple[int, ChainPoint] | None:
        for seq, value in filter_forward(self.crawl_backward()):
            return seq, value.point()
        return None

    def intersect_candidates(self, max_items: int) -> list[ChainPoint]:
        """Points from the tip backwards, spaced out exponentially."""
        entries = filter_forward(self.crawl_backward())
        out: list[ChainPoint] = []
        for _, value in entries:
            out.append(value.point())
            if len(out) >= max_items:
                break
            skip = 2 ** len(out) - 1
            next(itertools.islice(entries, skip, skip), None)
        return out

    def find_intersect(
        self, intersect: Iterable[ChainPoint]
    ) -> tuple[int, ChainPoint] | None:
        """The first candidate present in the log, with its sequence number."""
        for candidate in intersect:
            seq = self.locate_point(candidate)
            if seq is not None:
                return seq, candidate
        return None

    def read_block_range(self, start: ChainPoint, end: ChainPoint) -> Iterator[RawBlock]:
        first = self.assert_point(start)
        last = self.assert_point(end)
        return _blocks(filter_apply(self.crawl_range(first, last)))

    def read_block_page(self, start: ChainPoint | None, limit: int) -> Iterator[RawBlock]:
        seq = self.assert_point(start) if start is not None else None
        return itertools.islice(_blocks(filter_apply(self.crawl_from(seq))), limit)

    def read_block(self, point: ChainPoint) -> RawBlock:
        seq = self.assert_point(point)
        block = next(_blocks(filter_apply(self.crawl_from(seq))), None)
        if block is None:
            raise PointNotFoundError(point)
        return block

    def read_sparse_blocks(self, points: Sequence[ChainPoint]) -> list[RawBlock]:
        return [self.read_block(point) for point in points]