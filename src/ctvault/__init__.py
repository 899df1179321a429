"""ctvault: personal credential vault with envelope encryption."""
