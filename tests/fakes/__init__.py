"""Fake capability clients for tests."""
