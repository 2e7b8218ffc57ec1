"""Booking lifecycle tracking for the marketplace client."""

__version__ = "0.1.0"
