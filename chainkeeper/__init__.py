"""Write-ahead log and ledger state storage on SQLite for a chain-following node."""

__version__ = "0.1.0"