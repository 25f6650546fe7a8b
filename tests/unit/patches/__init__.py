"""Test package for patches."""
