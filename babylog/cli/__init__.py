"""Command-line interface for babylog."""
