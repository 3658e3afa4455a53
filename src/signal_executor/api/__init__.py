"""Inbound HTTP API: signal webhook and operator actions."""

from signal_executor.api.app import create_app

__all__ = ["create_app"]
