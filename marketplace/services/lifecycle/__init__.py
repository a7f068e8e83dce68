"""Transition validation shared by the order and remittance engines."""
