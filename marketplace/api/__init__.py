"""HTTP surface for the lifecycle engines."""
