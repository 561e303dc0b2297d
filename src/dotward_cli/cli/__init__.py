"""Command-line interface for dotward."""
