"""Daily Tally - shared daily counter backed by Google Sheets with a Redis fast cache."""

__version__ = "0.1.0"
