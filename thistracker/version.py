"""Version information for ThisTracker."""

__version__ = "1.0.0"
DATA_STRUCTURE_VERSION = "1.0.0"
