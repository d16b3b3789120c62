"""ThisTracker: client, project, task and time tracking stored in Google Sheets."""

from thistracker.version import __version__

__all__ = ["__version__"]
