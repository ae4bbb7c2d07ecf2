"""Fireflybot — chat commands in a Matrix room become Firefly III transactions."""

__version__ = "0.2.0"
