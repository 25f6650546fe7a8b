"""Test package for core."""
