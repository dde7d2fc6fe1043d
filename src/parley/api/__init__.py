"""HTTP API for the Parley application."""
