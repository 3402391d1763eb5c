"""Session lifecycle commands."""
