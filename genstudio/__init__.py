"""Generation task orchestrator for cold-start-prone inference backends."""

__version__ = "0.1.0"
