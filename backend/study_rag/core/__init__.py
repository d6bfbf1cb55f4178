"""Core settings, database and error types."""
