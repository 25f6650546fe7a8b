"""Integration tests across session components."""
