"""Batched, resumable sync of config lines into a remote ledger collection."""

__version__ = "0.2.0"
