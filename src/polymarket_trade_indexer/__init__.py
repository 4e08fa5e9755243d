"""Polymarket on-chain trade indexer."""

__version__ = "0.1.0"
