"""External subtitle acquisition and attachment for the LAMPA player."""

__version__ = "1.0.0"
