"""Bundled study content."""
