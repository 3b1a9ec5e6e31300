"""Command-line interface for codesift."""
