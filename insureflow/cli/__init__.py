"""Command line interface for InsureFlow."""
