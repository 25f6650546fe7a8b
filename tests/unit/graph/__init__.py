"""Test package for graph."""
