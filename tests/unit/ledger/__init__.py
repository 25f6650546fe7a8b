"""Test package for ledger."""
