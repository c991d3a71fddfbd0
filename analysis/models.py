#!/usr/bin/env python3
import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union


def _num(value: Decimal) -> float:
    return float(value)


@dataclass(frozen=True)
class TokenInfo:
    """A statically configured ERC-20 token."""
    symbol: str
    address: str
    decimals: int


@dataclass(frozen=True)
class PriceResult:
    """Best quote returned by the price API for one swap."""
    amount: Decimal  # output amount in human units of the destination token
    dex: str
    gas_cost_usd: Decimal = Decimal(0)


@dataclass(frozen=True)
class ArbitrageStep:
    """One leg of a two-hop route."""
    from_token: str
    to_token: str
    dex: str
    amount: Decimal  # output amount of this leg, in to_token units

    def to_dict(self) -> Dict[str, Any]:
        return {
            'from': self.from_token,
            'to': self.to_token,
            'dex': self.dex,
            'amount': _num(self.amount),
        }


@dataclass(frozen=True)
class ArbitrageOpportunity:
    """Snapshot of a profitable base -> intermediate -> base round trip."""
    route: str
    steps: Tuple[ArbitrageStep, ArbitrageStep]
    profit: Decimal  # in base asset units
    profit_percentage: Decimal
    flash_loan_amount: Decimal
    total_value_moved: Decimal
    gas_fee: Decimal = Decimal(0)  # USD, as reported by the price API
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))

    @property
    def base_symbol(self) -> str:
        return self.steps[0].from_token

    @property
    def intermediate_symbol(self) -> str:
        return self.steps[0].to_token

    def to_dict(self) -> Dict[str, Any]:
        return {
            'route': self.route,
            'steps': [step.to_dict() for step in self.steps],
            'profit': _num(self.profit),
            'profitPercentage': _num(self.profit_percentage),
            'flashLoanAmount': _num(self.flash_loan_amount),
            'totalValueMoved': _num(self.total_value_moved),
            'gasFee': _num(self.gas_fee),
            'timestamp': self.timestamp,
        }


@dataclass(frozen=True)
class SwapInfo:
    """Call data for one swap leg, built fresh for every execution attempt."""
    router: str
    path: Tuple[str, ...]
    amount_out_min: str  # smallest units, decimal digits
    dex_family: str
    extra_data: Optional[str] = None  # 0x-prefixed hex

    @property
    def token_in(self) -> str:
        return self.path[0]

    @property
    def token_out(self) -> str:
        return self.path[-1]

    def as_contract_arg(self) -> Tuple[str, list, int, bytes]:
        extra = bytes.fromhex(self.extra_data[2:]) if self.extra_data else b''
        return (self.router, list(self.path), int(self.amount_out_min), extra)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            'router': self.router,
            'path': list(self.path),
            'amountOutMin': self.amount_out_min,
            'dexType': self.dex_family,
        }
        if self.extra_data:
            payload['extraData'] = self.extra_data
        return payload


@dataclass(frozen=True)
class ExecutionSignal:
    """Everything the settlement contract needs for one flash-loan round trip."""
    asset: str
    amount: str  # smallest units, decimal digits
    swap1: SwapInfo
    swap2: SwapInfo

    def to_dict(self) -> Dict[str, Any]:
        return {
            'asset': self.asset,
            'amount': self.amount,
            'swap1': self.swap1.to_dict(),
            'swap2': self.swap2.to_dict(),
        }


class LogLevel(str, Enum):
    INFO = 'info'
    SUCCESS = 'success'
    WARNING = 'warning'
    ERROR = 'error'


@dataclass(frozen=True)
class RouteDetails:
    """Structured details attached to a profit log."""
    route: str
    profit: Decimal
    dex1: str
    dex2: str

    def to_dict(self) -> Dict[str, Any]:
        return {'route': self.route, 'profit': _num(self.profit), 'dex1': self.dex1, 'dex2': self.dex2}


@dataclass(frozen=True)
class LogEntry:
    """A user-visible event streamed to hub observers."""
    timestamp: int
    level: LogLevel
    message: str
    details: Union[RouteDetails, Dict[str, Any], None] = None

    @classmethod
    def now(cls, level: LogLevel, message: str, details: Union[RouteDetails, Dict[str, Any], None] = None) -> "LogEntry":
        return cls(timestamp=int(time.time() * 1000), level=level, message=message, details=details)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            'timestamp': self.timestamp,
            'type': self.level.value,
            'message': self.message,
        }
        if isinstance(self.details, RouteDetails):
            payload['details'] = self.details.to_dict()
        elif self.details:
            payload['details'] = self.details
        return payload
