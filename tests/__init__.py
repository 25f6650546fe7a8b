"""Test suite for gameshaper."""
