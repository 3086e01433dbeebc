"""Length-prefixed JSON protocol for daemon IPC.

Every message travels as one frame: a 4-byte big-endian payload length
followed by the UTF-8 JSON payload.

Messages are tagged variants. Variants without fields encode as a bare
string, variants with fields as a single-key object:

    Requests:   "Stop"
                "Info"

    Responses:  {"StopResult": {"server_name": str}}
                {"InfoResult": {
                    "server_name": str,
                    "server_url": str,
                    "hostname": str,
                    "status": "Connected" | "Connecting" | ...,
                    "info": {...} | null     # NetworkInfo.to_dict()
                }}

Decoders ignore fields they do not know, so newer peers can add fields
without breaking older ones.

One connection carries exactly one request and its response.
"""

import asyncio
import json
import struct
from dataclasses import dataclass
from typing import Any, Optional, Union

from vpnctl.core.engine import NetworkInfo

HEADER = struct.Struct(">I")
MAX_FRAME_SIZE = 8 * 1024 * 1024


class ProtocolError(Exception):
    """Raised for frames or payloads that cannot be decoded."""


@dataclass(frozen=True)
class StopRequest:
    TAG = "Stop"


@dataclass(frozen=True)
class InfoRequest:
    TAG = "Info"


@dataclass(frozen=True)
class StopResult:
    server_name: str

    TAG = "StopResult"


@dataclass(frozen=True)
class InfoResult:
    server_name: str
    server_url: str
    hostname: str
    status: str
    info: Optional[NetworkInfo] = None

    TAG = "InfoResult"


Request = Union[StopRequest, InfoRequest]
Response = Union[StopResult, InfoResult]

_REQUESTS = {cls.TAG: cls for cls in (StopRequest, InfoRequest)}
_RESPONSES = {cls.TAG: cls for cls in (StopResult, InfoResult)}


def _dumps(value: Any) -> bytes:
    return json.dumps(value).encode("utf-8")


def _loads(data: bytes) -> Any:
    try:
        return json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"Invalid payload: {e}") from e


def _split_variant(value: Any) -> tuple:
    """Return (tag, fields) for either encoding of a variant."""
    if isinstance(value, str):
        return value, {}
    if isinstance(value, dict) and len(value) == 1:
        tag, fields = next(iter(value.items()))
        if fields is None:
            fields = {}
        if not isinstance(fields, dict):
            raise ProtocolError(f"Fields of {tag} must be an object")
        return tag, fields
    raise ProtocolError("Message is not a tagged variant")


def serialize_request(request: Request) -> bytes:
    return _dumps(request.TAG)


def deserialize_request(data: bytes) -> Request:
    """
    Decode a request payload.

    Raises:
        ProtocolError: If the payload is not valid JSON or names no known request
    """
    tag, _ = _split_variant(_loads(data))
    if tag not in _REQUESTS:
        raise ProtocolError(f"Unknown request: {tag}")
    return _REQUESTS[tag]()


def serialize_response(response: Response) -> bytes:
    if isinstance(response, StopResult):
        fields = {"server_name": response.server_name}
    else:
        fields = {
            "server_name": response.server_name,
            "server_url": response.server_url,
            "hostname": response.hostname,
            "status": response.status,
            "info": response.info.to_dict() if response.info else None,
        }
    return _dumps({response.TAG: fields})


def deserialize_response(data: bytes) -> Response:
    """
    Decode a response payload.

    Missing string fields decode as "" and unknown fields are dropped.

    Raises:
        ProtocolError: If the payload is not valid JSON or names no known response
    """
    tag, fields = _split_variant(_loads(data))
    if tag not in _RESPONSES:
        raise ProtocolError(f"Unknown response: {tag}")

    if tag == StopResult.TAG:
        return StopResult(server_name=str(fields.get("server_name") or ""))

    info = fields.get("info")
    if info is not None and not isinstance(info, dict):
        raise ProtocolError("InfoResult.info must be an object or null")
    return InfoResult(
        server_name=str(fields.get("server_name") or ""),
        server_url=str(fields.get("server_url") or ""),
        hostname=str(fields.get("hostname") or ""),
        status=str(fields.get("status") or ""),
        info=NetworkInfo.from_dict(info) if info else None,
    )


def encode_frame(payload: bytes) -> bytes:
    if len(payload) > MAX_FRAME_SIZE:
        raise ProtocolError(f"Frame too large: {len(payload)} bytes")
    return HEADER.pack(len(payload)) + payload


async def read_frame(reader: asyncio.StreamReader) -> Optional[bytes]:
    """
    Read one frame payload.

    Returns None if the peer closed the connection before sending a header.

    Raises:
        ProtocolError: Oversized frame or connection closed mid-frame
    """
    try:
        header = await reader.readexactly(HEADER.size)
    except asyncio.IncompleteReadError as e:
        if not e.partial:
            return None
        raise ProtocolError("Connection closed inside frame header") from e

    (length,) = HEADER.unpack(header)
    if length > MAX_FRAME_SIZE:
        raise ProtocolError(f"Frame too large: {length} bytes")

    try:
        return await reader.readexactly(length)
    except asyncio.IncompleteReadError as e:
        raise ProtocolError(
            f"Connection closed after {len(e.partial)} of {length} payload bytes"
        ) from e


async def write_frame(writer: asyncio.StreamWriter, payload: bytes) -> None:
    writer.write(encode_frame(payload))
    await writer.drain()


async def read_request(reader: asyncio.StreamReader) -> Optional[Request]:
    payload = await read_frame(reader)
    return None if payload is None else deserialize_request(payload)


async def read_response(reader: asyncio.StreamReader) -> Optional[Response]:
    payload = await read_frame(reader)
    return None if payload is None else deserialize_response(payload)


async def write_message(writer: asyncio.StreamWriter, message: Union[Request, Response]) -> None:
    if isinstance(message, (StopRequest, InfoRequest)):
        payload = serialize_request(message)
    else:
        payload = serialize_response(message)
    await write_frame(writer, payload)
