"""Cherry-pick graph for one target branch."""
