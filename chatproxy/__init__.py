"""Transparent chat-completion proxy that records readable transcripts."""

__version__ = "0.1.0"
