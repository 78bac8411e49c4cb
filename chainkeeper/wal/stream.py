"""Follow the write-ahead log as it grows."""

from __future__ import annotations

import itertools
from collections.abc import AsyncIterator

from .model import LogEntry
from .reader import WalReader


async def stream_wal(wal: WalReader, start: int) -> AsyncIterator[LogEntry]:
    """Yield log entries from sequence ``start`` onwards, then wait for new ones.

    The stream never ends on its own; close it or cancel the consumer to stop.
    """
    last_seq = start

    for seq, value in wal.crawl_from(last_seq):
        last_seq = seq
        yield seq, value

    while True:
        found = False
        # the entry at last_seq was already yielded, so it is skipped
        for seq, value in itertools.islice(wal.crawl_from(last_seq), 1, None):
            found = True
            last_seq = seq
            yield seq, value

        if not found:
            await wal.tip_change()