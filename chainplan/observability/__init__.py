"""Observability: logging."""

from .logging import LoggerAdapter, setup_logging

__all__ = [
    "LoggerAdapter",
    "setup_logging",
]
