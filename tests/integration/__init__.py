"""Integration tests for planforge."""
