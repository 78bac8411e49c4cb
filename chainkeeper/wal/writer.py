"""Write access to the write-ahead log."""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Iterable

from .model import ChainPoint, LogValue, RawBlock
from .reader import WalReader, filter_apply, into_blocks


class WalWriter(WalReader):
    """A log that can also be appended to."""

    @abstractmethod
    def append_entries(self, logs: Iterable[LogValue]) -> None:
        """Append entries, assigning them consecutive sequence numbers."""

    def roll_forward(self, blocks: Iterable[RawBlock]) -> None:
        self.append_entries(LogValue.apply(block) for block in blocks)

    def roll_back(self, until: ChainPoint) -> None:
        """Undo every block applied after a point and mark that point."""
        seq = self.assert_point(until)
        newest_first = reversed(list(self.crawl_from(seq)))
        applied = [
            block
            for block in into_blocks(filter_apply(newest_first))
            if block is not None
        ]
        undos = [LogValue.undo(block) for block in applied if block.point() != until]
        self.append_entries([*undos, LogValue.mark(until)])