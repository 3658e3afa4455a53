"""Configuration system."""

from signal_executor.config.loader import load_config
from signal_executor.config.schema import AppConfig

__all__ = ["AppConfig", "load_config"]
