"""Spaced-repetition vocabulary review."""
