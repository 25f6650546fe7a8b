"""Test package for api."""
