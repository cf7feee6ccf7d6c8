"""Shared cache and distributed rate limiter for the task service."""

__version__ = "0.1.0"
