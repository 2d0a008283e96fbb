"""Wormhole - a shared activity timeline for AI coding agents."""

__version__ = "2.0.0"
