"""Integration tests: services against a real database."""
