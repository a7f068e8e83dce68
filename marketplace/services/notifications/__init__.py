"""Best-effort lifecycle notifications."""
