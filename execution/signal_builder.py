"""Turns a detected opportunity into a validated execution signal."""
from __future__ import annotations

import logging
import re
from decimal import ROUND_DOWN, Decimal
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from web3 import Web3

from analysis.analyzer import to_smallest_unit
from analysis.models import ArbitrageOpportunity, ExecutionSignal, SwapInfo, TokenInfo
from constants import DEFAULT_V3_FEE, DEX_FAMILIES, DEX_ROUTERS, STABLESWAP_POOLS, TOKENS
from errors import ConfigurationError, ValidationError
from execution.adapters import DexFamily, encode_swap

logger = logging.getLogger(__name__)

_UINT_RE = re.compile(r'[0-9]+')
_SEPARATORS_RE = re.compile(r'[\s_-]+')


def normalize_exchange_name(name: str) -> str:
    """'QuickSwap V2', 'quickswap_v2' and 'QuickSwapV2' all become 'quickswapv2'."""
    return _SEPARATORS_RE.sub('', name.strip().lower())


def is_uint_string(value: Any) -> bool:
    return isinstance(value, str) and _UINT_RE.fullmatch(value) is not None


def validate_swap(swap: Optional[SwapInfo], label: str) -> None:
    if swap is None:
        raise ValidationError(f"Missing {label}")
    if not Web3.is_address(swap.router):
        raise ValidationError(f"Invalid router address in {label}: {swap.router}", {'router': swap.router})
    if len(swap.path) < 2:
        raise ValidationError(f"Swap path in {label} needs at least two tokens", {'path': list(swap.path)})
    for token in swap.path:
        if not Web3.is_address(token):
            raise ValidationError(f"Invalid token address in {label} path: {token}", {'token': token})
    if not is_uint_string(swap.amount_out_min):
        raise ValidationError(
            f"Invalid minimum output in {label}: {swap.amount_out_min!r}", {'amountOutMin': swap.amount_out_min}
        )


def validate_signal(signal: ExecutionSignal) -> None:
    """Raises ValidationError unless the signal is complete and its legs chain asset -> X -> asset."""
    if not Web3.is_address(signal.asset):
        raise ValidationError(f"Invalid asset address: {signal.asset}", {'asset': signal.asset})
    if not is_uint_string(signal.amount):
        raise ValidationError(f"Invalid flash loan amount: {signal.amount!r}", {'amount': signal.amount})

    validate_swap(signal.swap1, 'swap1')
    validate_swap(signal.swap2, 'swap2')

    if signal.swap1.token_in.lower() != signal.asset.lower():
        raise ValidationError(
            "swap1 must start from the flash loan asset",
            {'asset': signal.asset, 'swap1_in': signal.swap1.token_in},
        )
    if signal.swap1.token_out.lower() != signal.swap2.token_in.lower():
        raise ValidationError(
            "swap1 output token does not match swap2 input token",
            {'swap1_out': signal.swap1.token_out, 'swap2_in': signal.swap2.token_in},
        )
    if signal.swap2.token_out.lower() != signal.asset.lower():
        raise ValidationError(
            "swap2 must end in the flash loan asset",
            {'asset': signal.asset, 'swap2_out': signal.swap2.token_out},
        )


class SignalBuilder:
    """Resolves symbols and exchanges through static tables and encodes both legs."""

    def __init__(
        self,
        *,
        max_slippage_pct: float = 1.0,
        tokens: Mapping[str, Mapping[str, Any]] = TOKENS,
        routers: Mapping[str, str] = DEX_ROUTERS,
        families: Mapping[str, str] = DEX_FAMILIES,
        stableswap_pools: Mapping[FrozenSet[str], str] = STABLESWAP_POOLS,
        v3_fees: Optional[Mapping[str, int]] = None,
    ) -> None:
        if not 0 <= max_slippage_pct < 100:
            raise ConfigurationError(f"max slippage must be in [0, 100): {max_slippage_pct}")
        self.max_slippage = Decimal(str(max_slippage_pct)) / Decimal(100)
        self.tokens = tokens
        self.routers = routers
        self.families = families
        self.stableswap_pools = stableswap_pools
        self.v3_fees = v3_fees or {}

    def build(self, opportunity: ArbitrageOpportunity) -> ExecutionSignal:
        base = self.resolve_token(opportunity.base_symbol)
        intermediate = self.resolve_token(opportunity.intermediate_symbol)
        step1, step2 = opportunity.steps

        try:
            amount_in = to_smallest_unit(opportunity.flash_loan_amount, base.decimals)
            leg1_out = to_smallest_unit(step1.amount, intermediate.decimals)
            leg2_out = to_smallest_unit(step2.amount, base.decimals)
        except ValueError as exc:
            raise ValidationError(str(exc), {'route': opportunity.route}) from exc

        swap1 = self._encode_leg(step1.dex, base, intermediate, amount_in, leg1_out)
        swap2 = self._encode_leg(step2.dex, intermediate, base, leg1_out, leg2_out)

        signal = ExecutionSignal(asset=base.address, amount=str(amount_in), swap1=swap1, swap2=swap2)
        validate_signal(signal)
        logger.debug("Built signal for %s: %s", opportunity.route, signal.to_dict())
        return signal

    def resolve_token(self, symbol: str) -> TokenInfo:
        entry = self.tokens.get(symbol.upper())
        if entry is None:
            raise ConfigurationError(f"Token not configured: {symbol}", {'symbol': symbol})
        address = str(entry['address'])
        if not Web3.is_address(address):
            raise ConfigurationError(
                f"Invalid address configured for {symbol}: {address}", {'symbol': symbol, 'address': address}
            )
        return TokenInfo(symbol=symbol.upper(), address=Web3.to_checksum_address(address), decimals=int(entry['decimals']))

    def resolve_exchange(self, dex_name: str) -> Tuple[str, str, DexFamily]:
        """Returns (normalised name, checksummed router, family) for an exchange name."""
        key = normalize_exchange_name(dex_name)
        router = self.routers.get(key)
        if router is None:
            raise ConfigurationError(f"Unsupported exchange: {dex_name}", {'dex': dex_name})
        if not Web3.is_address(router):
            raise ConfigurationError(
                f"Invalid router address configured for {dex_name}: {router}", {'dex': dex_name, 'router': router}
            )
        family_name = self.families.get(key)
        if family_name is None:
            raise ConfigurationError(f"No exchange family configured for {dex_name}", {'dex': dex_name})
        return key, Web3.to_checksum_address(router), DexFamily.parse(family_name)

    def min_output(self, quoted_out: int) -> int:
        return int((Decimal(quoted_out) * (1 - self.max_slippage)).to_integral_value(rounding=ROUND_DOWN))

    def _encode_leg(
        self, dex_name: str, token_in: TokenInfo, token_out: TokenInfo, amount_in: int, quoted_out: int
    ) -> SwapInfo:
        key, router, family = self.resolve_exchange(dex_name)
        extra: Dict[str, Any] = {}
        if family is DexFamily.CONCENTRATED_LIQUIDITY_V3:
            extra['fee'] = self.v3_fees.get(key, DEFAULT_V3_FEE)
        elif family is DexFamily.STABLESWAP:
            pool = self.stableswap_pools.get(frozenset({token_in.symbol, token_out.symbol}))
            if pool:
                extra['pool_address'] = Web3.to_checksum_address(pool)
        return encode_swap(
            family,
            router,
            token_in.address,
            token_out.address,
            amount_in,
            extra,
            amount_out_min=self.min_output(quoted_out),
        )
