"""Command-line tools for flow authors."""
