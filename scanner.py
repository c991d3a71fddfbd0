# scanner.py
import asyncio
import time
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from analysis.analyzer import OpportunityAnalyzer
from analysis.models import ArbitrageOpportunity, LogEntry, LogLevel, RouteDetails, TokenInfo
from config import AppConfig
from constants import C_BLUE, C_GREEN, C_RED, C_RESET, C_YELLOW, TOKENS
from errors import ArbitrageError
from execution.signal_builder import SignalBuilder
from hub.realtime_hub import RealtimeHub
from services.paraswap_client import ParaSwapClient
from services.trade_executor import TradeExecutor

_LEVEL_COLOURS = {
    LogLevel.INFO: C_BLUE,
    LogLevel.SUCCESS: C_GREEN,
    LogLevel.WARNING: C_YELLOW,
    LogLevel.ERROR: C_RED,
}


class ArbitrageScanner:
    def __init__(
        self,
        config: AppConfig,
        quote_client: ParaSwapClient,
        hub: RealtimeHub,
        signal_builder: SignalBuilder,
        trade_executor: Optional[TradeExecutor] = None,
        analyzer: Optional[OpportunityAnalyzer] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.quote_client = quote_client
        self.hub = hub
        self.signal_builder = signal_builder
        self.trade_executor = trade_executor
        self.analyzer = analyzer or OpportunityAnalyzer()
        self._sleep = sleep
        self._clock = clock
        self.base_token = self._token_info(config.base_token)
        self.tokens: Dict[str, TokenInfo] = {symbol: self._token_info(symbol) for symbol in config.tokens}
        self._pending_tasks: Set[asyncio.Task] = set()
        self.last_scan_time: Optional[str] = None
        self.found_last_scan = 0
        self.last_error: Optional[str] = None

    @staticmethod
    def _token_info(symbol: str) -> TokenInfo:
        entry = TOKENS[symbol]
        return TokenInfo(symbol=symbol, address=str(entry['address']), decimals=int(entry['decimals']))

    async def start(self):
        """Starts the main scanning loop."""
        await self._run_main_loop()

    async def _run_main_loop(self):
        """The main application loop; cycles start every `interval` seconds."""
        while True:
            cycle_started = self._clock()
            print("\n" + "="*50)
            print("Starting new arbitrage scan cycle...")
            try:
                opportunities = await self.scan_cycle()
                await self._process_opportunities(opportunities)
                self.last_error = None
            except Exception as e:
                print(f"{C_RED}Error during scan cycle: {e}{C_RESET}")
                self.last_error = str(e)
                await self._log(LogLevel.ERROR, "Error checking arbitrage opportunities", {'error': str(e)})

            wait = max(0.0, self.config.interval - (self._clock() - cycle_started))
            print(f"Global scan finished. Waiting {wait:.1f} seconds...")
            print("="*50)
            await self._sleep(wait)

    async def scan_cycle(self) -> List[ArbitrageOpportunity]:
        """Quotes base -> token -> base for every configured token; returns the profitable round trips."""
        opportunities: List[ArbitrageOpportunity] = []
        for index, symbol in enumerate(self.tokens):
            if index:
                await self._sleep(self.config.pacing_delay)
            opportunity = await self._scan_token(self.tokens[symbol])
            if opportunity is not None:
                opportunities.append(opportunity)

        self.last_scan_time = time.strftime('%Y-%m-%d %H:%M:%S')
        self.found_last_scan = len(opportunities)
        print("-" * 40)
        print(f"Scan complete. Found {len(opportunities)} profitable opportunities.")
        return opportunities

    async def _scan_token(self, intermediate: TokenInfo) -> Optional[ArbitrageOpportunity]:
        """Runs both legs for one intermediate token. Failures never leave this method."""
        base = self.base_token
        probe = Decimal(self.config.probe_amount)
        print(f"Scanning route: {C_YELLOW}{base.symbol} -> {intermediate.symbol} -> {base.symbol}{C_RESET}")
        try:
            leg1 = await self.quote_client.quote(base, intermediate, probe)
            if leg1 is None:
                await self._log(LogLevel.ERROR, f"Could not get price for {base.symbol} -> {intermediate.symbol}")
                return None

            await self._sleep(self.config.pacing_delay)

            leg2 = await self.quote_client.quote(intermediate, base, leg1.amount)
            if leg2 is None:
                await self._log(LogLevel.ERROR, f"Could not get price for {intermediate.symbol} -> {base.symbol}")
                return None

            opportunity = self.analyzer.evaluate(base.symbol, intermediate.symbol, probe, leg1, leg2)
        except Exception as e:
            await self._log(
                LogLevel.ERROR,
                f"Error checking pair {base.symbol}/{intermediate.symbol}: {e}",
                {'error': type(e).__name__, 'message': str(e)},
            )
            return None

        profitable = opportunity.profit > 0
        await self._log(
            LogLevel.SUCCESS if profitable else LogLevel.INFO,
            f"{opportunity.route}: profit {opportunity.profit:.6f} {base.symbol} ({opportunity.profit_percentage:.4f}%)",
            RouteDetails(route=opportunity.route, profit=opportunity.profit, dex1=leg1.dex, dex2=leg2.dex),
        )
        return opportunity if profitable else None

    async def _process_opportunities(self, opportunities: List[ArbitrageOpportunity]):
        """Broadcasts the batch and starts one independent task per actionable opportunity."""
        if not opportunities:
            return

        opportunities = sorted(opportunities, key=lambda x: x.profit_percentage, reverse=True)
        await self.hub.publish_opportunities(opportunities)

        for opp in opportunities:
            self._print_opportunity(opp)
            if not self.analyzer.is_profitable(opp, self.config.min_profit_pct):
                await self._log(
                    LogLevel.INFO,
                    f"{opp.route}: {opp.profit_percentage:.4f}% is below the {self.config.min_profit_pct}% minimum, skipping",
                )
                continue
            task = asyncio.create_task(self._handle_opportunity(opp))
            self._pending_tasks.add(task)
            task.add_done_callback(self._pending_tasks.discard)

    async def _handle_opportunity(self, opp: ArbitrageOpportunity):
        try:
            signal = self.signal_builder.build(opp)
            if self.trade_executor is None:
                TradeExecutor.simulate(signal)
                await self._log(
                    LogLevel.INFO,
                    f"[DryRun] {opp.route}: signal validated, not submitted",
                    {'route': opp.route, 'signal': signal.to_dict()},
                )
            else:
                result = await self.trade_executor.execute(signal)
                await self._log(
                    LogLevel.SUCCESS,
                    f"Arbitrage executed for {opp.route} in block {result.block_number}",
                    {'route': opp.route, **result.to_dict()},
                )
            await self.hub.publish_opportunity(opp, signal)
        except ArbitrageError as e:
            await self._log(LogLevel.ERROR, f"Failed to execute {opp.route}: {e.message}", {'route': opp.route, **e.to_payload()})
        except Exception as e:
            await self._log(
                LogLevel.ERROR,
                f"Unexpected error executing {opp.route}: {e}",
                {'route': opp.route, 'error': type(e).__name__, 'message': str(e)},
            )

    def _print_opportunity(self, opp: ArbitrageOpportunity):
        """Formats and prints a single opportunity to the console."""
        dexes = " / ".join(step.dex for step in opp.steps)
        print(f"OPPORTUNITY: {opp.route} via {dexes}"
              f" | Profit: {opp.profit:.6f} {opp.base_symbol} ({opp.profit_percentage:.4f}%)")

    async def _log(self, level: LogLevel, message: str, details: Union[RouteDetails, Dict[str, Any], None] = None):
        print(f"{_LEVEL_COLOURS[level]}{message}{C_RESET}")
        await self.hub.publish_log(LogEntry.now(level, message, details))

    def status(self) -> Dict[str, Any]:
        return {
            'last_scan_time': self.last_scan_time,
            'found_last_scan': self.found_last_scan,
            'last_error': self.last_error,
        }

    def cancel_pending(self) -> int:
        """Abandons in-flight execution tasks; returns how many were cancelled."""
        pending = [task for task in self._pending_tasks if not task.done()]
        for task in pending:
            task.cancel()
        return len(pending)
