"""Thread Tracker - keeps watch over Discord threads and scheduled messages."""

__version__ = "0.1.0"
