"""Per-connection shared state for WebSocket action handlers."""

from __future__ import annotations

import dataclasses
from typing import Callable, Optional

from fastapi import WebSocket

from storyteller.state.registry import ActiveSession, SessionRegistry
from storyteller.state.usage import UsageLedger


@dataclasses.dataclass
class WsSessionContext:
    """Bundles all per-connection state that action handlers need.

    Created once per WebSocket connection in ``handler.py``.  The registry
    and ledger are the process-level instances from ``app.state``.
    """
    websocket: WebSocket
    socket_id: str
    registry: SessionRegistry
    ledger: UsageLedger
    session_id: Optional[str] = None        # set by join-session (or the first session event)
    user_id: Optional[str] = None
    unsubscribe_usage: Optional[Callable[[], None]] = None
    session_record: Optional[ActiveSession] = None   # registry entry this connection owns
    action: str = ""                        # current action name
