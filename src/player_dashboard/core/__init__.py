"""Core configuration, error types and security primitives."""
