"""Heads-or-tails bet settlement service."""

__version__ = "1.0.0"
