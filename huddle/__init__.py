"""Huddle: real-time group and private chat server."""

__version__ = "0.1.0"
