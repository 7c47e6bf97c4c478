# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""HTTP/SSE surface for the bridge."""

from __future__ import annotations

from .app import BridgeEndpoint, accepts_event_stream, create_app
from .transport import HTTPTransport


__all__ = [
    "BridgeEndpoint",
    "HTTPTransport",
    "accepts_event_stream",
    "create_app",
]
