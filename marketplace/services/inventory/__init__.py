"""Inventory reservation ledger."""
