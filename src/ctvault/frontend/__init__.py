"""Front ends for ctvault."""
