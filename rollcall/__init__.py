"""Rollcall: time-boxed, location-aware attendance sessions."""

__version__ = "1.0.0"
