"""middleman - relay two anonymous chat sessions into one conversation."""

__version__ = "0.1.0"
