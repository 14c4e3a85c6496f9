"""Kitty — a terminal chat client with task planning and a token budget."""

__version__ = "0.1.0"
