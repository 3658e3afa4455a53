"""Config loader: reads YAML, applies EXECUTOR_* env var overrides."""

from __future__ import annotations

import os
from pathlib import Path

import yaml

from signal_executor.config.schema import AppConfig

# env var -> (section, key)
_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "EXECUTOR_DATABASE_URL": ("database", "url"),
    "EXECUTOR_LOG_LEVEL": ("logging", "level"),
    "EXECUTOR_LOG_FORMAT": ("logging", "format"),
    "EXECUTOR_API_KEY": ("exchange", "api_key"),
    "EXECUTOR_API_SECRET": ("exchange", "api_secret"),
    "EXECUTOR_TESTNET": ("exchange", "testnet"),
    "EXECUTOR_MAX_CAPITAL": ("budget", "max_capital"),
    "EXECUTOR_MAX_PAIRS": ("budget", "max_pairs"),
    "EXECUTOR_LEVERAGE": ("budget", "leverage"),
    "EXECUTOR_TAKE_PROFIT": ("budget", "take_profit_rate"),
    "EXECUTOR_STOP_LOSS": ("budget", "stop_loss_rate"),
    "EXECUTOR_TRAILING_RATE": ("budget", "trailing_rate"),
    "EXECUTOR_ORDER_TTL_S": ("budget", "order_ttl_s"),
    "EXECUTOR_HTTP_PORT": ("api", "port"),
}


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load config from a YAML file, then apply env var overrides.

    If *path* is None or the file doesn't exist, returns defaults.

    Environment variable overrides (empty values are ignored):
        EXECUTOR_DATABASE_URL   -> database.url
        EXECUTOR_LOG_LEVEL      -> logging.level
        EXECUTOR_LOG_FORMAT     -> logging.format
        EXECUTOR_API_KEY        -> exchange.api_key
        EXECUTOR_API_SECRET     -> exchange.api_secret
        EXECUTOR_TESTNET        -> exchange.testnet
        EXECUTOR_MAX_CAPITAL    -> budget.max_capital
        EXECUTOR_MAX_PAIRS      -> budget.max_pairs
        EXECUTOR_LEVERAGE       -> budget.leverage
        EXECUTOR_TAKE_PROFIT    -> budget.take_profit_rate
        EXECUTOR_STOP_LOSS      -> budget.stop_loss_rate
        EXECUTOR_TRAILING_RATE  -> budget.trailing_rate
        EXECUTOR_ORDER_TTL_S    -> budget.order_ttl_s
        EXECUTOR_HTTP_PORT      -> api.port
    """
    data: dict = {}
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p) as f:
                data = yaml.safe_load(f) or {}

    # Apply env var overrides; pydantic coerces the strings
    for env_name, (section, key) in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            data.setdefault(section, {})[key] = value

    return AppConfig.model_validate(data)
