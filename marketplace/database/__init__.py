"""Ledger store: declarative base, engine and session management, models."""
