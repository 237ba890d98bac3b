"""Parsers for locally cached vulnerability feeds that fill an in-memory advisory store."""

__version__ = "0.1.0"