"""Per-exchange-family swap encoders.

Every family turns ``(router, token_in, token_out, amount_in)`` into a
:class:`SwapInfo` the settlement contract understands.

Concentrated-liquidity paths are packed as ``token (20 bytes) || fee (3 bytes)
|| token ...``. The exact-input parameters are ABI encoded as the tuple
``(bytes path, address recipient, uint256 deadline, uint256 amountIn,
uint256 amountOutMinimum)`` with a zero recipient (the contract substitutes
itself) and deadline 0 (no deadline).
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from eth_abi import encode

from analysis.models import SwapInfo
from constants import DEFAULT_V3_FEE, ZERO_ADDRESS
from errors import ConfigurationError

EXACT_INPUT_PARAMS_TYPE = '(bytes,address,uint256,uint256,uint256)'
MAX_FEE = 2 ** 24 - 1


class DexFamily(str, Enum):
    CONSTANT_PRODUCT_V2 = 'constant-product-v2'
    CONCENTRATED_LIQUIDITY_V3 = 'concentrated-liquidity-v3'
    STABLESWAP = 'stableswap'

    @classmethod
    def parse(cls, value: Any) -> "DexFamily":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ConfigurationError(
                f"Unsupported exchange family: {value}", {'family': str(value)}
            ) from None


def encode_v3_path(tokens: Sequence[str], fees: Sequence[int]) -> str:
    """Packs a multi-hop path; returns lowercase 0x-prefixed hex."""
    if len(tokens) != len(fees) + 1:
        raise ValueError(f"path/fee lengths do not match: {len(tokens)} tokens, {len(fees)} fees")

    encoded = '0x'
    for token, fee in zip(tokens, fees):
        if not 0 <= int(fee) <= MAX_FEE:
            raise ValueError(f"fee {fee} does not fit in 3 bytes")
        encoded += _strip_address(token)
        encoded += format(int(fee), '06x')
    encoded += _strip_address(tokens[-1])
    return encoded.lower()


def _strip_address(address: str) -> str:
    body = address[2:] if address.startswith(('0x', '0X')) else address
    if len(body) != 40:
        raise ValueError(f"not a 20-byte address: {address}")
    return body


def _encode_constant_product(
    router: str, token_in: str, token_out: str, amount_in: int, amount_out_min: int, extra: Mapping[str, Any]
) -> SwapInfo:
    return SwapInfo(
        router=router,
        path=(token_in, token_out),
        amount_out_min=str(amount_out_min),
        dex_family=DexFamily.CONSTANT_PRODUCT_V2.value,
    )


def _encode_concentrated_liquidity(
    router: str, token_in: str, token_out: str, amount_in: int, amount_out_min: int, extra: Mapping[str, Any]
) -> SwapInfo:
    fee = int(extra.get('fee') or DEFAULT_V3_FEE)
    path = encode_v3_path([token_in, token_out], [fee])
    params = encode(
        [EXACT_INPUT_PARAMS_TYPE],
        [(bytes.fromhex(path[2:]), ZERO_ADDRESS, 0, amount_in, amount_out_min)],
    )
    return SwapInfo(
        router=router,
        path=(token_in, token_out),
        amount_out_min=str(amount_out_min),
        dex_family=DexFamily.CONCENTRATED_LIQUIDITY_V3.value,
        extra_data='0x' + params.hex(),
    )


def _encode_stableswap(
    router: str, token_in: str, token_out: str, amount_in: int, amount_out_min: int, extra: Mapping[str, Any]
) -> SwapInfo:
    pool_address = extra.get('pool_address')
    if not pool_address:
        raise ConfigurationError(
            "Pool address is required for stableswap swaps",
            {'router': router, 'token_in': token_in, 'token_out': token_out},
        )
    payload = encode(['address', 'address'], [pool_address, token_out])
    return SwapInfo(
        router=router,
        path=(token_in, token_out),
        amount_out_min=str(amount_out_min),
        dex_family=DexFamily.STABLESWAP.value,
        extra_data='0x' + payload.hex(),
    )


Encoder = Callable[[str, str, str, int, int, Mapping[str, Any]], SwapInfo]

_ENCODERS: Dict[DexFamily, Encoder] = {
    DexFamily.CONSTANT_PRODUCT_V2: _encode_constant_product,
    DexFamily.CONCENTRATED_LIQUIDITY_V3: _encode_concentrated_liquidity,
    DexFamily.STABLESWAP: _encode_stableswap,
}


def encode_swap(
    family: DexFamily | str,
    router: str,
    token_in: str,
    token_out: str,
    amount_in: int,
    extra_params: Optional[Mapping[str, Any]] = None,
    *,
    amount_out_min: int = 0,
) -> SwapInfo:
    """Builds the SwapInfo for one leg. Unknown families raise ConfigurationError."""
    dex_family = DexFamily.parse(family)
    if amount_in < 0 or amount_out_min < 0:
        raise ValueError("swap amounts must be non-negative")
    return _ENCODERS[dex_family](router, token_in, token_out, int(amount_in), int(amount_out_min), extra_params or {})
