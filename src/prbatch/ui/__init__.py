"""Presentation layer: CLI parsing and the status reporter."""
