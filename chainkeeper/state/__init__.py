"""Ledger state stores: unspent outputs, parameter updates and lookup indexes."""