"""Forward incoming SMS to a Telegram chat."""

__version__ = "0.1.0"
