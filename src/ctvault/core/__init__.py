"""Core definitions shared across ctvault."""
