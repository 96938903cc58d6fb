"""Command-line interface for recall."""
