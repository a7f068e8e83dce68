"""Marketplace order and remittance lifecycle engine."""

__version__ = "1.0.0"
