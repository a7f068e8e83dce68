"""Core configuration, logging, error and identity primitives."""
