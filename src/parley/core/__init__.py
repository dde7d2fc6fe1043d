"""Core configuration, security helpers and error types."""
