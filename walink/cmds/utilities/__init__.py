"""Utility commands."""
