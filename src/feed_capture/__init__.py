"""feed-capture - subscribe to a live event feed and keep the latest event per category on disk."""

__all__ = ["__version__"]
__version__ = "0.1.0"
