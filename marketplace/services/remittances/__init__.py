"""Remittance lifecycle engine."""
