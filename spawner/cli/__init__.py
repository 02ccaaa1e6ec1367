"""Command line interface for spawner."""
