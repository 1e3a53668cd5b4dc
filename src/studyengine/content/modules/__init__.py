"""Bundled study module JSON files."""
