"""trailguard: position tracking and automated exit engine."""

__version__ = "1.6.0"
