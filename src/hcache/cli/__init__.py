"""Command-line interface for the hybrid cache."""
