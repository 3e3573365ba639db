"""Pegwatch - price, depeg and pair-ratio alerts for crypto assets."""

__version__ = "0.1.0"
