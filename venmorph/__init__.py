"""Venmorph attestor: settles EVM-side payment requests with XRPL payments."""

__version__ = "0.1.0"
