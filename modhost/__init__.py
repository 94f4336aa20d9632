"""Embedded runtime that loads, orders and drives application modules."""

__version__ = "0.1.0"
