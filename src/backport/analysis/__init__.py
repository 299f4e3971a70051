"""Analysis of commits missing from target branches."""
