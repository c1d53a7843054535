"""companion: a daily chat companion with crisis screening."""

__version__ = "0.1.0"
