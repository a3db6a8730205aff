"""Chat backend: accounts, tokens, chats, and live events."""

__version__ = "0.1.0"
