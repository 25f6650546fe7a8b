"""Test package for feedback."""
