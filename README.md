# chainkeeper

Storage for a node that follows a block chain. It has two parts, both kept
in SQLite, in memory or in a file:

- an append-only write-ahead log (WAL) of chain events: blocks applied,
  blocks undone, and marks at chain points;
- a ledger state store holding unspent outputs, protocol-parameter updates
  and, in one schema, lookup indexes by address and asset.

## Install

    pip install chainkeeper

To run the tests:

    pip install "chainkeeper[test]"
    pytest

## The write-ahead log

`chainkeeper.wal.model` holds the value types: `ChainPoint` (the origin, or
a slot with a 32-byte hash), `RawBlock` (slot, hash, `Era`, body bytes) and
`LogValue`, built with `LogValue.apply(block)`, `LogValue.undo(block)` or
`LogValue.mark(point)`. Each entry written to the log gets the next sequence
number, starting at 0.

`chainkeeper.wal.store.WalStore` is the log itself:

```python
from chainkeeper.wal.model import ChainPoint, Era, RawBlock, slot_to_hash
from chainkeeper.wal.store import WalStore

wal = WalStore.memory(None)
wal.initialize_from_origin()          # writes a mark at the origin as entry 0

blocks = [
    RawBlock(slot=s, hash=slot_to_hash(s), era=Era.BYRON, body=b"...")
    for s in (0, 10, 20, 30)
]
wal.roll_forward(blocks)

seq, tip = wal.find_tip()             # (4, ChainPoint(30, ...))

# Undo the blocks after slot 10 and mark slot 10 as the new tip.
wal.roll_back(ChainPoint(10, slot_to_hash(10)))

for seq, entry in wal.crawl_from(None):
    print(seq, entry.action, entry.point())
```

`initialize_from_origin` raises `NotEmptyError` on a log that already holds
more than the origin mark.

Every store offers these reads: `crawl_from`, `crawl_range`,
`crawl_backward`, `locate_point`, `assert_point`, `find_start`, `find_tip`,
`intersect_candidates` (points from the tip backwards, spaced out
exponentially), `find_intersect`, `read_block`, `read_block_range`,
`read_block_page` and `read_sparse_blocks`. A point that is not in the log
raises `PointNotFoundError`. The helpers `filter_apply`, `filter_forward`
and `into_blocks` in `chainkeeper.wal.reader` filter and map entry
iterators.

A store opened with a `max_slots` limit drops old history when
`housekeeping()` runs, at most 10,000 slots per call:

```python
wal = WalStore.open("wal.db", None, 100_000)   # path, cache size in MB, max slots
wal.housekeeping()
wal.close()
```

`prune_history(max_slots, max_prune)`, `remove_before(slot)` and
`remove_range(start, end)` remove entries directly; `remove_before` raises
`SlotNotFoundError` when no recorded slot lies close enough below the
target. `WalStore` is also a context manager that closes the database on
exit.

### Following the log

`chainkeeper.wal.stream.stream_wal(wal, start)` is an async generator. It
yields every entry from sequence `start` on, then waits on
`wal.tip_change()` and yields new entries as they are appended. It never
ends by itself; stop consuming it to stop it.

```python
from chainkeeper.wal.stream import stream_wal

async def follow(wal):
    async for seq, entry in stream_wal(wal, 0):
        print(seq, entry.action)
```

## Ledger state

`chainkeeper.state.store.LedgerStore` keeps ledger state in one of three
schemas:

- `v1`: a blocks table and per-slot tombstones of consumed outputs;
- `v2`: a cursor table plus filter indexes by address, payment part,
  stake part, policy and asset;
- `v2-light`: the cursor schema without the indexes.

`LedgerStore.open(path, cache_size)` detects the schema of an existing
database from a hash of its table names (`compute_schema_hash`) and sets up
a new database as v2; an unrecognised database raises
`InvalidStoreVersionError`. `LedgerStore.open_v2_light` accepts only a new
or a v2-light database. `in_memory_v1`, `in_memory_v2` and
`in_memory_v2_light` create stores in memory. The `schema` property names
the schema in use.

Changes are given as `LedgerDelta` values from `chainkeeper.state.types`:

```python
import cbor2

from chainkeeper.state.store import LedgerStore
from chainkeeper.state.types import EraCbor, LedgerDelta, LedgerPoint, TxoRef
from chainkeeper.wal.model import Era

address = bytes([0x61]) + bytes(28)   # an enterprise address
output = EraCbor(Era.BABBAGE, cbor2.dumps([address, 2_000_000]))
ref = TxoRef(bytes(32), 0)

ledger = LedgerStore.in_memory_v2()
ledger.apply([
    LedgerDelta(new_position=LedgerPoint(100, bytes(32)), produced_utxo={ref: output}),
])

ledger.cursor()                       # LedgerPoint(slot=100, ...)
ledger.get_utxos([ref])               # {ref: output}
ledger.get_utxo_by_address(address)   # {ref}
```

`finalize(until)` drops, for slots before `until`, the outputs those slots
consumed along with their bookkeeping entries. `get_pparams(until)` returns
the parameter updates recorded before `until`, oldest first.

Index lookups (`get_utxo_by_address`, `get_utxo_by_payment`,
`get_utxo_by_stake`, `get_utxo_by_policy`, `get_utxo_by_asset`) are served
only by the v2 schema; the other schemas raise `QueryNotSupportedError`.
`upgrade()` turns a v2-light store into a v2 store by building the indexes.
`copy(target)` copies a v2 store into another v2 store, or a v2-light store
into another v2-light store; other pairs raise `InvalidStoreVersionError`.
Storage failures raise `StorageError`; all ledger errors derive from
`LedgerError`.

`chainkeeper.state.outputs` decodes the parts of an output the indexes use:
`decode_output` reads its address, coin and assets, and `split_address`
splits an address into its payment and delegation parts.

## Small helpers

- `chainkeeper.masking.apply_mask(obj, paths)` keeps only the dotted paths
  given, such as `["bar.abc"]`, of a dataclass instance or a mapping. Other
  dataclass fields take their defaults; `ValueError` is raised if a dropped
  field has none.
- `chainkeeper.convert.bytes_to_hash32(data)` checks that a value is a
  32-byte hash and raises `InvalidArgumentError` otherwise.

## What this package does not do

It is storage only. It does not connect to peers or pull blocks from the
network, it does not decode blocks or work out the `LedgerDelta` a block
causes (the caller builds the deltas), and it does not serve queries over
any network protocol. There is no command-line program.