"""Order lifecycle engine."""
