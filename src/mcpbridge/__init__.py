# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""Expose a stdio JSON-RPC (MCP) server over HTTP with Server-Sent Events."""

from __future__ import annotations

from .bridge import Bridge
from .bus import MessageBus, Subscription
from .config import BridgeConfig, ConfigurationError
from .correlation import Correlator, PendingWaiter
from .framing import FrameDecodeError, FrameDecoder
from .server import HTTPTransport, create_app
from .supervisor import ChildProcessHandle, ProcessSupervisor
from .types import ProcessExited, RpcMessage


__all__ = [
    "Bridge",
    "BridgeConfig",
    "ChildProcessHandle",
    "ConfigurationError",
    "Correlator",
    "FrameDecodeError",
    "FrameDecoder",
    "HTTPTransport",
    "MessageBus",
    "PendingWaiter",
    "ProcessExited",
    "ProcessSupervisor",
    "RpcMessage",
    "Subscription",
    "create_app",
]
