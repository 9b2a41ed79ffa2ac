"""hookbridge: forward chat messages to an automation webhook and send replies back."""

__version__ = "0.1.0"
