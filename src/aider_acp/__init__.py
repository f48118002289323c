"""Agent Client Protocol bridge for the aider CLI."""

__version__ = "0.3.0"
