"""Command line interface for CartEVM."""
