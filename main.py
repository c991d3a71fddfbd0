#!/usr/bin/env python3
import asyncio
import logging
import sys

import aiohttp
from aiohttp import web

import constants
from config import AppConfig, load_config
from errors import ArbitrageError
from execution.signal_builder import SignalBuilder
from hub.handlers import HUB_KEY, SCANNER_KEY, setup_routes
from hub.realtime_hub import RealtimeHub
from scanner import ArbitrageScanner
from services.paraswap_client import ParaSwapClient
from services.rate_limiter import QuoteThrottle
from services.trade_executor import TradeExecutor

CONFIG_KEY = web.AppKey('config', AppConfig)
SESSION_KEY = web.AppKey('http_session', aiohttp.ClientSession)
SCANNER_TASK_KEY = web.AppKey('scanner_task', asyncio.Task)


async def on_startup_hook(app: web.Application) -> None:
    """Builds the shared clients and starts the scanner in the background."""
    config = app[CONFIG_KEY]

    # Create and store a single, shared aiohttp session
    session = aiohttp.ClientSession(headers={'User-Agent': 'FlashArbScanner/1.0'})
    app[SESSION_KEY] = session

    throttle = QuoteThrottle(
        min_interval=config.min_request_interval,
        base_cooldown=config.base_cooldown,
        max_cooldown=config.max_cooldown,
    )
    quote_client = ParaSwapClient(
        session,
        throttle,
        base_url=config.paraswap_api_url,
        cache_ttl=config.cache_ttl,
        max_retries=config.max_retries,
        timeout=config.request_timeout,
    )

    trade_executor = None
    if config.auto_trade:
        try:
            trade_executor = await asyncio.to_thread(
                TradeExecutor.from_rpc,
                config.rpc_url,
                config.private_key,
                config.executor_address,
                max_attempts=config.max_attempts,
                gas_margin_pct=config.gas_margin_pct,
                confirmation_timeout=config.confirmation_timeout,
            )
            print("Trade executor initialized.")
        except ArbitrageError as exc:
            print(f"{constants.C_RED}Failed to initialise trade executor: {exc}{constants.C_RESET}")
            sys.exit(1)
    else:
        print(f"{constants.C_YELLOW}Auto trade disabled; opportunities will be dry-run only.{constants.C_RESET}")

    scanner = ArbitrageScanner(
        config,
        quote_client,
        app[HUB_KEY],
        SignalBuilder(max_slippage_pct=config.max_slippage),
        trade_executor=trade_executor,
    )
    app[SCANNER_KEY] = scanner
    app[SCANNER_TASK_KEY] = asyncio.create_task(scanner.start())
    print(f"Hub listening on ws://{config.host}:{config.port} (health: /api/health)")


async def on_shutdown_hook(app: web.Application) -> None:
    """Stops scanning, abandons executions and drops every client before the listener closes."""
    print("Shutting down...")
    task = app.get(SCANNER_TASK_KEY)
    if task is not None:
        task.cancel()
    scanner = app.get(SCANNER_KEY)
    if scanner is not None:
        scanner.cancel_pending()
    await app[HUB_KEY].close()


async def on_cleanup_hook(app: web.Application) -> None:
    """Runs on application cleanup to release the HTTP session."""
    session = app.get(SESSION_KEY)
    if session:
        await session.close()
    print("Server stopped.")


def create_app(config: AppConfig) -> web.Application:
    app = web.Application()
    app[CONFIG_KEY] = config
    app[HUB_KEY] = RealtimeHub(
        log_capacity=config.log_capacity,
        ping_interval=config.ping_interval,
        pong_timeout=config.pong_timeout,
    )
    setup_routes(app)
    app.on_startup.append(on_startup_hook)
    app.on_shutdown.append(on_shutdown_hook)
    app.on_cleanup.append(on_cleanup_hook)
    return app


def main() -> None:
    """The main synchronous entry point for the application."""
    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    print(f"Scanning {config.base_token} against {', '.join(config.tokens)} every {config.interval}s")
    web.run_app(create_app(config), host=config.host, port=config.port, print=None)


if __name__ == "__main__":
    main()
