"""Command-line entry points for the practice scheduler."""
