"""Test package for clients."""
