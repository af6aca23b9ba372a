"""Import a Letterboxd user's film diary into a local SQLite store and report on it."""

__version__ = "0.1.0"
