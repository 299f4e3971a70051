"""Backport commits to release branches."""
