"""Duet: pairwise end-to-end encrypted chat hub and client."""

__version__ = "0.1.0"
