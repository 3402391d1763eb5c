"""walink: supervised, self-repairing messaging session with an operator console."""

__version__ = "0.3.0"
