"""Core configuration, logging, models and command execution."""
