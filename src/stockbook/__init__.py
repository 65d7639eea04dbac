"""Stockbook - small-business inventory, production and cash ledger."""

__version__ = "0.1.0"
