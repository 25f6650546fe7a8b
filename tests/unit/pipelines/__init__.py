"""Test package for pipelines."""
