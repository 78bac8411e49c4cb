"""Append-only write-ahead log of chain events, with readers and a live stream."""