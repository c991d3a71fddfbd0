#!/usr/bin/env python3
import argparse
import os
import sys
from decimal import Decimal, InvalidOperation
from typing import NamedTuple, Optional, Sequence

import constants


class AppConfig(NamedTuple):
    """Typed configuration object."""
    base_token: str
    tokens: list[str]
    probe_amount: Decimal
    interval: int
    pacing_delay: float
    cache_ttl: float
    min_request_interval: float
    base_cooldown: float
    max_cooldown: float
    max_retries: int
    request_timeout: float
    min_profit_pct: float
    max_slippage: float
    auto_trade: bool
    max_attempts: int
    gas_margin_pct: int
    confirmation_timeout: float
    host: str
    port: int
    log_capacity: int
    ping_interval: float
    pong_timeout: float
    log_level: str
    paraswap_api_url: str
    rpc_url: str | None
    private_key: str | None
    executor_address: str | None


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"invalid decimal value: {value!r}") from None


def load_config(argv: Optional[Sequence[str]] = None) -> AppConfig:
    """
    Parses command-line arguments and loads environment variables to create a configuration object.
    """
    parser = argparse.ArgumentParser(
        description="Scan a token basket for two-leg flash-loan arbitrage and stream results to live observers.",
        epilog="Example: ./main.py --base-token USDC --tokens WMATIC WETH --probe-amount 1000 --min-profit-pct 0.3"
    )
    # --- Scanning ---
    parser.add_argument('--base-token', type=str.upper, default=constants.DEFAULT_BASE_TOKEN, help='Flash-loan asset symbol (default: USDC).')
    parser.add_argument('--tokens', nargs='+', type=str.upper, help='Intermediate token symbols (default: every configured token except the base).')
    parser.add_argument('--probe-amount', type=_decimal, default=Decimal(1), help='Probe amount in base token units (default: 1).')
    parser.add_argument('--interval', type=int, default=constants.DEFAULT_SCAN_INTERVAL, help='Seconds to wait between each scan (default: 300).')
    parser.add_argument('--pacing-delay', type=float, default=constants.DEFAULT_PACING_DELAY, help='Seconds between quote legs and between tokens (default: 1.0).')

    # --- Price API ---
    parser.add_argument('--cache-ttl', type=float, default=constants.DEFAULT_CACHE_TTL, help='Price cache TTL in seconds (default: 30).')
    parser.add_argument('--min-request-interval', type=float, default=constants.DEFAULT_MIN_REQUEST_INTERVAL, help='Minimum seconds between price requests (default: 1.0).')
    parser.add_argument('--base-cooldown', type=float, default=constants.DEFAULT_BASE_COOLDOWN, help='Base cooldown after a rate limit, doubled per consecutive 429 (default: 2.0).')
    parser.add_argument('--max-cooldown', type=float, default=constants.DEFAULT_MAX_COOLDOWN, help='Cooldown cap in seconds (default: 60).')
    parser.add_argument('--max-retries', type=int, default=constants.DEFAULT_MAX_RETRIES, help='Total price request attempts while rate limited (default: 3).')
    parser.add_argument('--request-timeout', type=float, default=constants.DEFAULT_REQUEST_TIMEOUT, help='Price API request timeout in seconds (default: 10).')

    # --- Execution ---
    parser.add_argument('--min-profit-pct', type=float, default=0.0, help='Minimum profit percentage required to act on an opportunity (default: 0.0).')
    parser.add_argument('--max-slippage', type=float, default=1.0, help='Slippage tolerance percentage applied to each leg (default: 1.0).')
    parser.add_argument('--auto-trade', action='store_true', help='Submit transactions for detected opportunities instead of dry-running them.')
    parser.add_argument('--max-attempts', type=int, default=constants.DEFAULT_MAX_ATTEMPTS, help='Submission attempts per opportunity (default: 3).')
    parser.add_argument('--gas-margin-pct', type=int, default=constants.DEFAULT_GAS_MARGIN_PCT, help='Safety margin added to the gas estimate (default: 10).')
    parser.add_argument('--confirmation-timeout', type=float, default=constants.DEFAULT_CONFIRMATION_TIMEOUT, help='Seconds to wait for a receipt (default: 30).')

    # --- Hub ---
    parser.add_argument('--host', type=str, default='0.0.0.0', help='Hub listen address (default: 0.0.0.0).')
    parser.add_argument('--port', type=int, default=constants.DEFAULT_HUB_PORT, help='Hub listen port (default: 3002).')
    parser.add_argument('--log-capacity', type=int, default=constants.DEFAULT_LOG_CAPACITY, help='Number of recent logs replayed to new clients (default: 100).')
    parser.add_argument('--ping-interval', type=float, default=constants.DEFAULT_PING_INTERVAL, help='Seconds between client heartbeats (default: 30).')
    parser.add_argument('--pong-timeout', type=float, default=constants.DEFAULT_PONG_TIMEOUT, help='Seconds a client has to answer a ping (default: 5).')
    parser.add_argument('--log-level', type=str.upper, default='INFO', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], help='Logging level (default: INFO).')

    args = parser.parse_args(argv)

    if args.base_token not in constants.TOKENS:
        parser.error(f"--base-token {args.base_token} is not a configured token.")

    tokens = args.tokens or [symbol for symbol in constants.TOKENS if symbol != args.base_token]
    unknown = [symbol for symbol in tokens if symbol not in constants.TOKENS]
    if unknown:
        parser.error(f"Unknown token symbol(s): {', '.join(unknown)}")
    tokens = [symbol for symbol in dict.fromkeys(tokens) if symbol != args.base_token]
    if not tokens:
        parser.error('At least one intermediate token different from the base token is required.')

    if args.probe_amount <= 0:
        parser.error('--probe-amount must be positive.')
    if not 0 <= args.max_slippage < 100:
        parser.error('--max-slippage must be between 0 and 100.')
    if args.max_retries < 1 or args.max_attempts < 1:
        parser.error('--max-retries and --max-attempts must be at least 1.')

    # Load from environment
    paraswap_api_url = os.environ.get(constants.PARASWAP_API_URL_ENV_VAR) or constants.PARASWAP_API_BASE_URL
    rpc_url = os.environ.get(constants.RPC_URL_ENV_VAR)
    private_key = os.environ.get(constants.PRIVATE_KEY_ENV_VAR)
    executor_address = os.environ.get(constants.ARBITRAGE_EXECUTOR_ENV_VAR)

    if args.auto_trade:
        missing = [
            name for name, value in (
                (constants.RPC_URL_ENV_VAR, rpc_url),
                (constants.PRIVATE_KEY_ENV_VAR, private_key),
                (constants.ARBITRAGE_EXECUTOR_ENV_VAR, executor_address),
            ) if not value
        ]
        if missing:
            print(f"{constants.C_RED}--auto-trade requires environment variable(s): {', '.join(missing)}{constants.C_RESET}")
            sys.exit(1)

    return AppConfig(
        base_token=args.base_token,
        tokens=tokens,
        probe_amount=args.probe_amount,
        interval=args.interval,
        pacing_delay=args.pacing_delay,
        cache_ttl=args.cache_ttl,
        min_request_interval=args.min_request_interval,
        base_cooldown=args.base_cooldown,
        max_cooldown=args.max_cooldown,
        max_retries=args.max_retries,
        request_timeout=args.request_timeout,
        min_profit_pct=args.min_profit_pct,
        max_slippage=args.max_slippage,
        auto_trade=args.auto_trade,
        max_attempts=args.max_attempts,
        gas_margin_pct=args.gas_margin_pct,
        confirmation_timeout=args.confirmation_timeout,
        host=args.host,
        port=args.port,
        log_capacity=args.log_capacity,
        ping_interval=args.ping_interval,
        pong_timeout=args.pong_timeout,
        log_level=args.log_level,
        paraswap_api_url=paraswap_api_url,
        rpc_url=rpc_url,
        private_key=private_key,
        executor_address=executor_address,
    )
