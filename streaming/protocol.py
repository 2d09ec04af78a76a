"""
Wire protocol of the combined-stream websocket endpoint.

Outbound control messages::

    {"method": "SUBSCRIBE", "params": ["btcusdt@depth"], "id": 7}

Inbound frames are one of:

* data:  ``{"stream": "btcusdt@depth", "data": {...}}``
* ack:   ``{"result": null, "id": 7}``
* error: ``{"error": {"code": 2, "msg": "Invalid request"}, "id": 7}``
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from networking.exceptions import ProtocolError

SUBSCRIBE = "SUBSCRIBE"
UNSUBSCRIBE = "UNSUBSCRIBE"

# Streams per control message; keeps frames small and under the
# exchange's inbound message rate when resubscribing many streams.
MAX_STREAMS_PER_MESSAGE = 100


@dataclass(frozen=True, slots=True)
class DataFrame:
    stream: str
    data: Any


@dataclass(frozen=True, slots=True)
class AckFrame:
    request_id: int
    result: Any = None


@dataclass(frozen=True, slots=True)
class ErrorFrame:
    request_id: Optional[int]
    code: Optional[int]
    message: str


def control_message(method: str, streams: Sequence[str], request_id: int) -> Dict[str, Any]:
    return {"method": method, "params": list(streams), "id": request_id}


def chunked(items: Sequence[str], size: int = MAX_STREAMS_PER_MESSAGE) -> List[List[str]]:
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def decode_frame(raw: Any) -> Any:
    """Decode a text/binary websocket frame as JSON."""
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolError("binary frame is not UTF-8") from exc
    if not isinstance(raw, str):
        raise ProtocolError(f"unsupported frame type {type(raw).__name__}")
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise ProtocolError(f"invalid JSON frame: {raw[:100]}") from exc


def classify_frame(payload: Any):
    """Return a DataFrame, AckFrame or ErrorFrame for a decoded payload."""
    if not isinstance(payload, dict):
        raise ProtocolError(f"unexpected frame: {payload!r}"[:200])
    if "stream" in payload and "data" in payload:
        return DataFrame(stream=str(payload["stream"]), data=payload["data"])
    if "error" in payload:
        error = payload.get("error") or {}
        if not isinstance(error, dict):
            error = {"msg": str(error)}
        return ErrorFrame(
            request_id=payload.get("id"),
            code=error.get("code"),
            message=str(error.get("msg", "")),
        )
    if "id" in payload and "result" in payload:
        return AckFrame(request_id=payload["id"], result=payload["result"])
    raise ProtocolError(f"unrecognised frame keys: {sorted(payload)}")


def update_range(stream: str, data: Any) -> Optional[Tuple[int, int]]:
    """
    ``(first_id, last_id)`` carried by a message, or ``None`` if it has no ordering id.

    depth diff: ``U``..``u``; trade: ``t``; aggTrade: ``a``.
    """
    if not isinstance(data, dict):
        return None
    try:
        if "U" in data and "u" in data:
            return int(data["U"]), int(data["u"])
        event = data.get("e")
        if event == "trade" and "t" in data:
            return int(data["t"]), int(data["t"])
        if event == "aggTrade" and "a" in data:
            return int(data["a"]), int(data["a"])
    except (TypeError, ValueError):
        return None
    return None


__all__ = [
    "AckFrame",
    "DataFrame",
    "ErrorFrame",
    "MAX_STREAMS_PER_MESSAGE",
    "SUBSCRIBE",
    "UNSUBSCRIBE",
    "chunked",
    "classify_frame",
    "control_message",
    "decode_frame",
    "update_range",
]
