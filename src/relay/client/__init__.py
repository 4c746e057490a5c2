"""Command-line client for the relay."""
