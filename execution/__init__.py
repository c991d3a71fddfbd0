"""Execution package: swap encoding and execution-signal construction."""

from .adapters import DexFamily, encode_swap, encode_v3_path
from .signal_builder import SignalBuilder

__all__ = ["DexFamily", "SignalBuilder", "encode_swap", "encode_v3_path"]
