# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""Message types shared by the bridge components.

The bridge does not interpret JSON-RPC methods; it only needs to know whether a
message carries an ``id`` and to compare identifiers.  Error payloads reuse the
reference SDK's ``ErrorData`` model and error-code constants so the codes we
emit match the rest of the MCP ecosystem.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from mcp.types import INVALID_REQUEST, PARSE_ERROR, ErrorData
import orjson


JSONRPC_VERSION = "2.0"

# Server-defined error range; used for transport failures (process gone,
# write dropped, client must accept SSE).
TRANSPORT_ERROR = -32000

RequestId = Union[str, int, float, None]

_VALID_ID_TYPES = (str, int, float, type(None))


def is_valid_id(value: object) -> bool:
    """Return ``True`` when *value* can serve as a JSON-RPC identifier."""
    return isinstance(value, _VALID_ID_TYPES)


def id_key(value: RequestId) -> tuple[type, RequestId]:
    """Key used for exact identifier matching.

    Python considers ``1 == 1.0 == True``; JSON-RPC identifiers must not be
    coerced across types, so the concrete type is part of the key.
    """
    return (type(value), value)


@dataclass(frozen=True, slots=True)
class RpcMessage:
    """One JSON-RPC object parsed from the child's output or an HTTP body.

    The payload is treated as read-only once parsed.
    """

    payload: dict[str, Any]

    @property
    def has_id(self) -> bool:
        return "id" in self.payload

    @property
    def id(self) -> RequestId:
        return self.payload.get("id")

    @property
    def method(self) -> str | None:
        method = self.payload.get("method")
        return method if isinstance(method, str) else None

    def matches(self, identifier: RequestId) -> bool:
        if not self.has_id or not is_valid_id(self.id):
            return False
        return id_key(self.id) == id_key(identifier)

    def to_json(self) -> str:
        return orjson.dumps(self.payload).decode()

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"RpcMessage(id={self.id!r}, method={self.method!r})"


@dataclass(frozen=True, slots=True)
class ProcessExited:
    """Published on the bus whenever the child process ends."""

    returncode: int | None


BusEvent = Union[RpcMessage, ProcessExited]


def error_payload(request_id: RequestId, code: int, message: str, data: Any = None) -> dict[str, Any]:
    """Build a JSON-RPC error response object."""
    error = ErrorData(code=code, message=message, data=data)
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "error": error.model_dump(exclude_none=True),
    }


def error_message(request_id: RequestId, code: int, message: str, data: Any = None) -> RpcMessage:
    return RpcMessage(error_payload(request_id, code, message, data))


__all__ = [
    "INVALID_REQUEST",
    "JSONRPC_VERSION",
    "PARSE_ERROR",
    "TRANSPORT_ERROR",
    "BusEvent",
    "ProcessExited",
    "RequestId",
    "RpcMessage",
    "error_message",
    "error_payload",
    "id_key",
    "is_valid_id",
]
