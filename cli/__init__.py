"""Command-line surface for running reservations from an export token."""
