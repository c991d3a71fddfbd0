"""Submits execution signals to the flash-loan settlement contract."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from web3 import Web3
from web3.exceptions import TimeExhausted, Web3Exception

from analysis.models import ExecutionSignal, SwapInfo
from constants import (
    ARBITRAGE_EXECUTOR_ABI,
    DEFAULT_CONFIRMATION_TIMEOUT,
    DEFAULT_GAS_MARGIN_PCT,
    DEFAULT_MAX_ATTEMPTS,
)
from errors import ConfigurationError, ExecutionError, TransactionTimeoutError
from execution.signal_builder import validate_signal

# Raised by providers and contract calls for RPC failures, reverts during
# estimation and connection problems.
RPC_ERRORS = (Web3Exception, ValueError, OSError)


class ExecutionState(str, Enum):
    VALIDATING = 'validating'
    GAS_ESTIMATING = 'gas-estimating'
    SUBMITTING = 'submitting'
    CONFIRMING = 'confirming'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'


@dataclass(slots=True)
class TradeResult:
    tx_hash: str
    block_number: int
    gas_used: int
    gas_limit: int
    attempts: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'txHash': self.tx_hash,
            'blockNumber': self.block_number,
            'gasUsed': self.gas_used,
            'gasLimit': self.gas_limit,
            'attempts': self.attempts,
        }


ContractArgs = Tuple[str, int, Tuple[str, list, int, bytes], Tuple[str, list, int, bytes]]


class TradeExecutor:
    """Runs ``Validating -> GasEstimating -> Submitting -> Confirming`` for one signal.

    Submission and confirmation are retried together up to ``max_attempts``
    times; validation and gas estimation failures are not retried. Blocking
    web3 calls run in worker threads.
    """

    def __init__(
        self,
        web3: Web3,
        contract: Any,
        account: Any,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        gas_margin_pct: int = DEFAULT_GAS_MARGIN_PCT,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        retry_delay: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.web3 = web3
        self.contract = contract
        self.account = account
        self.max_attempts = max(1, max_attempts)
        self.gas_margin_pct = gas_margin_pct
        self.confirmation_timeout = confirmation_timeout
        self.retry_delay = retry_delay
        self._sleep = sleep
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_rpc(cls, rpc_url: str, private_key: str, contract_address: str, **kwargs: Any) -> "TradeExecutor":
        if not Web3.is_address(contract_address):
            raise ConfigurationError(f"Invalid settlement contract address: {contract_address}")

        web3 = Web3(Web3.HTTPProvider(rpc_url))
        if not web3.is_connected():
            raise ConfigurationError(f"Could not connect to RPC URL: {rpc_url}")

        account = web3.eth.account.from_key(private_key)
        contract = web3.eth.contract(address=Web3.to_checksum_address(contract_address), abi=ARBITRAGE_EXECUTOR_ABI)
        return cls(web3, contract, account, **kwargs)

    async def execute(self, signal: ExecutionSignal) -> TradeResult:
        """Returns only for a confirmed, non-reverted receipt; raises the last error otherwise."""
        self._enter(ExecutionState.VALIDATING, signal)
        validate_signal(signal)
        args = self._contract_args(signal)

        self._enter(ExecutionState.GAS_ESTIMATING, signal)
        gas_limit = await asyncio.to_thread(self._estimate_gas, args)

        # Every attempt reuses the first nonce so a resubmission replaces the
        # earlier transaction instead of broadcasting a second trade.
        nonce: Optional[int] = None
        last_error: Optional[ExecutionError] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                self._enter(ExecutionState.SUBMITTING, signal, attempt)
                if nonce is None:
                    nonce = await asyncio.to_thread(self._pending_nonce)
                self.logger.info(
                    "Attempt %d/%d: executeArbitrage(asset=%s, amount=%s, swap1=%s, swap2=%s) gas=%d",
                    attempt,
                    self.max_attempts,
                    signal.asset,
                    signal.amount,
                    signal.swap1.to_dict(),
                    signal.swap2.to_dict(),
                    gas_limit,
                )
                tx_hash = await asyncio.to_thread(self._submit, args, gas_limit, nonce)

                self._enter(ExecutionState.CONFIRMING, signal, attempt)
                receipt = await self._wait_for_receipt(tx_hash)
            except ExecutionError as exc:
                last_error = exc
                self.logger.warning("Attempt %d/%d failed: %s", attempt, self.max_attempts, exc.message)
                if attempt < self.max_attempts:
                    await self._sleep(self.retry_delay)
                continue

            result = TradeResult(
                tx_hash=tx_hash,
                block_number=int(receipt['blockNumber']),
                gas_used=int(receipt.get('gasUsed') or 0),
                gas_limit=gas_limit,
                attempts=attempt,
            )
            self._enter(ExecutionState.SUCCEEDED, signal, attempt)
            self.logger.info("Arbitrage confirmed in block %d (tx %s)", result.block_number, result.tx_hash)
            return result

        self._enter(ExecutionState.FAILED, signal, self.max_attempts)
        if last_error is None:
            raise ExecutionError("Execution failed without an attempt")
        raise last_error

    @staticmethod
    def simulate(signal: ExecutionSignal) -> Dict[str, Any]:
        """Dry run: validates the signal and logs the call it would make."""
        validate_signal(signal)
        params = signal.to_dict()
        logging.getLogger(__name__).info("[DryRun] executeArbitrage %s", params)
        return params

    def _enter(self, state: ExecutionState, signal: ExecutionSignal, attempt: int = 0) -> None:
        self.logger.debug("[%s] asset=%s amount=%s attempt=%d", state.value, signal.asset, signal.amount, attempt)

    def _contract_args(self, signal: ExecutionSignal) -> ContractArgs:
        return (
            Web3.to_checksum_address(signal.asset),
            int(signal.amount),
            self._swap_arg(signal.swap1),
            self._swap_arg(signal.swap2),
        )

    @staticmethod
    def _swap_arg(swap: SwapInfo) -> Tuple[str, list, int, bytes]:
        router, path, amount_out_min, extra = swap.as_contract_arg()
        return (
            Web3.to_checksum_address(router),
            [Web3.to_checksum_address(token) for token in path],
            amount_out_min,
            extra,
        )

    def _estimate_gas(self, args: ContractArgs) -> int:
        try:
            estimate = self.contract.functions.executeArbitrage(*args).estimate_gas({'from': self.account.address})
        except RPC_ERRORS as exc:
            raise ExecutionError(f"Gas estimation failed: {exc}") from exc
        return int(estimate) * (100 + self.gas_margin_pct) // 100

    def _pending_nonce(self) -> int:
        try:
            return int(self.web3.eth.get_transaction_count(self.account.address, 'pending'))
        except RPC_ERRORS as exc:
            raise ExecutionError(f"Could not fetch nonce: {exc}") from exc

    def _submit(self, args: ContractArgs, gas_limit: int, nonce: int) -> str:
        """Builds, signs and broadcasts one transaction.

        Any failure here, including signing or ABI errors, becomes an
        ExecutionError so the attempt loop can retry it.
        """
        try:
            tx = self.contract.functions.executeArbitrage(*args).build_transaction(
                {'from': self.account.address, 'nonce': nonce, 'gas': gas_limit}
            )
            signed = self.account.sign_transaction(tx)
            tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as exc:
            raise ExecutionError(str(exc) or type(exc).__name__) from exc

        if not isinstance(tx_hash, (bytes, str)) or not tx_hash:
            raise ExecutionError("Transaction submission returned no hash", {'response': repr(tx_hash)})
        return Web3.to_hex(tx_hash) if isinstance(tx_hash, bytes) else tx_hash

    async def _wait_for_receipt(self, tx_hash: str) -> Any:
        try:
            receipt = await asyncio.wait_for(
                asyncio.to_thread(self.web3.eth.wait_for_transaction_receipt, tx_hash, self.confirmation_timeout),
                timeout=self.confirmation_timeout,
            )
        except (asyncio.TimeoutError, TimeExhausted) as exc:
            raise TransactionTimeoutError({'txHash': tx_hash}) from exc
        except RPC_ERRORS as exc:
            raise ExecutionError(str(exc), {'txHash': tx_hash}) from exc

        if receipt is None:
            raise ExecutionError("No receipt returned", {'txHash': tx_hash})
        if receipt.get('status') == 0:
            raise ExecutionError("Transaction reverted", {'txHash': tx_hash, 'blockNumber': receipt.get('blockNumber')})
        return receipt
