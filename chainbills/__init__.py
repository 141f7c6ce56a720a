"""Crypto-paid utility purchase gateway backed by VTpass."""

__version__ = "1.0.0"
