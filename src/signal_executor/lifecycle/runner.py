"""Process runner: API server and the scheduled passes in one event loop."""

from __future__ import annotations

import argparse
import asyncio
import os
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone

import structlog
import uvicorn

from signal_executor.api.app import create_app
from signal_executor.config.loader import load_config
from signal_executor.config.schema import AppConfig
from signal_executor.db.engine import dispose_engine, get_sessionmaker, init_engine
from signal_executor.errors import EXCHANGE_ERRORS
from signal_executor.exchange import BinanceFuturesClient
from signal_executor.lifecycle.controller import LifecycleController
from signal_executor.lifecycle.persistence import SignalStore
from signal_executor.logging.setup import setup_logging

log = structlog.get_logger("runner")


def seconds_until_daily(hour_utc: int, now: datetime | None = None) -> float:
    """Seconds from *now* until the next HH:00 UTC."""
    now = now or datetime.now(timezone.utc)
    target = now.replace(hour=hour_utc, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


async def run_periodic(name: str, interval_s: float, job: Callable[[], Awaitable[object]]) -> None:
    """Run *job* every *interval_s* seconds; errors are logged, never fatal."""
    while True:
        with structlog.contextvars.bound_contextvars(pass_name=name):
            try:
                await job()
            except Exception:
                log.exception("pass_error")
        await asyncio.sleep(interval_s)


async def run_daily(name: str, hour_utc: int, job: Callable[[], Awaitable[object]]) -> None:
    while True:
        await asyncio.sleep(seconds_until_daily(hour_utc))
        with structlog.contextvars.bound_contextvars(pass_name=name):
            try:
                await job()
            except Exception:
                log.exception("pass_error")


def build_controller(config: AppConfig) -> LifecycleController:
    """Wire the exchange client, store and controller from config."""
    init_engine(config.database.url)
    client = BinanceFuturesClient(
        base_url=config.exchange.resolved_url,
        api_key=config.exchange.api_key,
        api_secret=config.exchange.api_secret,
        recv_window=config.exchange.recv_window,
        timeout_s=config.exchange.timeout_s,
    )
    store = SignalStore(get_sessionmaker())
    return LifecycleController(config, client, store)


async def run(config: AppConfig) -> None:
    controller = build_controller(config)
    schedule = config.schedule

    try:
        await controller.refresh_instruments()
    except EXCHANGE_ERRORS:
        log.exception("initial_instrument_refresh_failed")

    server = uvicorn.Server(uvicorn.Config(
        create_app(controller),
        host=config.api.host,
        port=config.api.port,
        log_config=None,  # Use our structlog setup
    ))

    log.info(
        "executor_started",
        exchange=config.exchange.resolved_url,
        port=config.api.port,
        sizing_interval_s=schedule.sizing_interval_s,
        entry_interval_s=schedule.entry_interval_s,
        close_interval_s=schedule.close_interval_s,
    )

    controller.executor.legs.start()
    tasks = [
        asyncio.create_task(run_periodic("sizing", schedule.sizing_interval_s, controller.sizing_pass)),
        asyncio.create_task(run_periodic("entry", schedule.entry_interval_s, controller.entry_pass)),
        asyncio.create_task(run_periodic("close", schedule.close_interval_s, controller.close_pass)),
        asyncio.create_task(run_daily("instruments", schedule.refresh_hour_utc,
                                      controller.refresh_instruments)),
    ]
    try:
        await server.serve()
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await controller.executor.legs.stop()
        await controller.gateway.close()
        dispose_engine()
        log.info("executor_stopped")


def main(config_path: str | None = None) -> None:
    """Entry point: load config, set up logging, run the event loop."""
    if config_path is None:
        parser = argparse.ArgumentParser(description="Signal executor")
        parser.add_argument(
            "--config",
            default=os.environ.get("EXECUTOR_CONFIG"),
            help="Path to config.yaml (default: $EXECUTOR_CONFIG)",
        )
        config_path = parser.parse_args().config
    config = load_config(config_path)
    setup_logging(level=config.logging.level, log_format=config.logging.format)
    asyncio.run(run(config))
