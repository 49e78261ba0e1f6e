"""Batch ledger: batch lifecycle registry, change notices and root anchoring."""

__version__ = "0.1.0"
