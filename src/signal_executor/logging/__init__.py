"""Structured logging."""

from signal_executor.logging.setup import setup_logging, signal_logger

__all__ = ["setup_logging", "signal_logger"]
