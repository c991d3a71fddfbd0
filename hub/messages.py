"""Wire format of the realtime hub.

Every frame is a JSON object with a ``type`` tag; payloads travel under ``data``.
"""
from __future__ import annotations

import json
import time
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from analysis.models import ArbitrageOpportunity, ExecutionSignal, LogEntry


class MessageType(str, Enum):
    INITIAL = 'initial'
    LOGS = 'logs'
    LOG = 'log'
    OPPORTUNITY = 'opportunity'
    OPPORTUNITIES = 'opportunities'
    PING = 'ping'
    PONG = 'pong'


def initial_message(logs: Iterable[LogEntry]) -> Dict[str, Any]:
    return {'type': MessageType.INITIAL.value, 'data': [entry.to_dict() for entry in logs]}


def log_message(entry: LogEntry) -> Dict[str, Any]:
    return {'type': MessageType.LOG.value, 'data': entry.to_dict()}


def opportunity_message(
    opportunity: ArbitrageOpportunity, signal: Optional[ExecutionSignal] = None
) -> Dict[str, Any]:
    data = opportunity.to_dict()
    if signal is not None:
        data['signal'] = signal.to_dict()
    return {'type': MessageType.OPPORTUNITY.value, 'data': data}


def opportunities_message(opportunities: Iterable[ArbitrageOpportunity]) -> Dict[str, Any]:
    return {
        'type': MessageType.OPPORTUNITIES.value,
        'data': [opportunity.to_dict() for opportunity in opportunities],
        'timestamp': int(time.time() * 1000),
    }


def ping_message() -> Dict[str, Any]:
    return {'type': MessageType.PING.value}


def pong_message() -> Dict[str, Any]:
    return {'type': MessageType.PONG.value}


def parse_message(raw: str) -> Optional[MessageType]:
    """Returns the frame's type, or None for malformed JSON and unknown tags."""
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(payload, dict):
        return None
    try:
        return MessageType(payload.get('type'))
    except ValueError:
        return None
