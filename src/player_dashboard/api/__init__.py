"""HTTP API for the player dashboard."""
