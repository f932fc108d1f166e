"""Multi-model planning, coding and review workflow."""

__version__ = "0.1.0"
