"""Scheduled domain crawler that publishes llms.txt artifacts."""

__version__ = "0.1.0"
