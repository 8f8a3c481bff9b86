"""
Ferry - Transfer protocol messages and wire format.

Created by orpheus497

The transfer protocol has exactly four logical messages:

    {type: "unit-start", name, size, mime, index, total}
    {type: "unit-chunk", index, bytes}
    {type: "unit-end", index}
    {type: "set-complete"}

Chunks carry no offset: they are concatenated in arrival order, so the
channel underneath must be ordered and reliable.

On a byte stream every message is prefixed with a header containing:
- Protocol version (1 byte)
- Message type (2 bytes)
- Payload length (4 bytes)

Total header size: 7 bytes. Control messages carry a UTF-8 JSON payload;
a chunk carries its 4-byte unit index followed by the raw bytes.
"""

import json
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, ClassVar, Dict, Tuple, Union

from .constants import DEFAULT_MIME_TYPE, MAX_MESSAGE_SIZE, PROTOCOL_VERSION
from .errors import ErrorCode, NetworkError


class MessageType(IntEnum):
    """Message type definitions."""

    UNIT_START = 1
    UNIT_CHUNK = 2
    UNIT_END = 3
    SET_COMPLETE = 4


@dataclass(frozen=True)
class UnitStart:
    """Announces a file: sender-asserted metadata, not verified."""

    TYPE: ClassVar[str] = "unit-start"
    MSG_TYPE: ClassVar[MessageType] = MessageType.UNIT_START

    name: str
    size: int
    mime: str
    index: int
    total: int


@dataclass(frozen=True)
class UnitChunk:
    """One ordered slice of the file with the given index."""

    TYPE: ClassVar[str] = "unit-chunk"
    MSG_TYPE: ClassVar[MessageType] = MessageType.UNIT_CHUNK

    index: int
    data: bytes

    def __repr__(self) -> str:
        return f"UnitChunk(index={self.index}, len={len(self.data)})"


@dataclass(frozen=True)
class UnitEnd:
    """Marks the end of the file with the given index."""

    TYPE: ClassVar[str] = "unit-end"
    MSG_TYPE: ClassVar[MessageType] = MessageType.UNIT_END

    index: int


@dataclass(frozen=True)
class SetComplete:
    """Sent once after the last file."""

    TYPE: ClassVar[str] = "set-complete"
    MSG_TYPE: ClassVar[MessageType] = MessageType.SET_COMPLETE


Message = Union[UnitStart, UnitChunk, UnitEnd, SetComplete]

MESSAGE_CLASSES = {cls.MSG_TYPE: cls for cls in (UnitStart, UnitChunk, UnitEnd, SetComplete)}


def _invalid(message: str, **details: Any) -> NetworkError:
    return NetworkError(ErrorCode.E206_INVALID_MESSAGE, message, details)


def _require_int(payload: Dict, field_name: str, msg_type: str, minimum: int = 0) -> int:
    value = payload.get(field_name)
    if isinstance(value, bool) or not isinstance(value, int):
        raise _invalid(
            f"Missing or non-integer field: {field_name}",
            message_type=msg_type,
            field=field_name,
        )
    if value < minimum:
        raise _invalid(
            f"Field {field_name} below {minimum}: {value}",
            message_type=msg_type,
            field=field_name,
        )
    return value


def to_wire(message: Message) -> Dict[str, Any]:
    """Convert a message to its logical wire shape."""
    if isinstance(message, UnitStart):
        return {
            "type": UnitStart.TYPE,
            "name": message.name,
            "size": message.size,
            "mime": message.mime,
            "index": message.index,
            "total": message.total,
        }
    if isinstance(message, UnitChunk):
        return {"type": UnitChunk.TYPE, "index": message.index, "bytes": message.data}
    if isinstance(message, UnitEnd):
        return {"type": UnitEnd.TYPE, "index": message.index}
    if isinstance(message, SetComplete):
        return {"type": SetComplete.TYPE}
    raise TypeError(f"Not a protocol message: {message!r}")


def from_wire(payload: Dict[str, Any]) -> Message:
    """
    Build a message from its logical wire shape.

    Raises:
        NetworkError: If the type is unknown or a field is missing
    """
    if not isinstance(payload, dict):
        raise _invalid("Message must be an object")

    msg_type = payload.get("type")

    if msg_type == UnitStart.TYPE:
        name = payload.get("name")
        if not isinstance(name, str) or not name:
            raise _invalid("Missing required field: name", message_type=msg_type, field="name")
        mime = payload.get("mime") or DEFAULT_MIME_TYPE
        if not isinstance(mime, str):
            raise _invalid("Field mime must be a string", message_type=msg_type, field="mime")
        return UnitStart(
            name=name,
            size=_require_int(payload, "size", msg_type),
            mime=mime,
            index=_require_int(payload, "index", msg_type),
            total=_require_int(payload, "total", msg_type, minimum=1),
        )

    if msg_type == UnitChunk.TYPE:
        data = payload.get("bytes")
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise _invalid("Missing required field: bytes", message_type=msg_type, field="bytes")
        return UnitChunk(index=_require_int(payload, "index", msg_type), data=bytes(data))

    if msg_type == UnitEnd.TYPE:
        return UnitEnd(index=_require_int(payload, "index", msg_type))

    if msg_type == SetComplete.TYPE:
        return SetComplete()

    raise _invalid(f"Unknown message type: {msg_type!r}", type=str(msg_type))


class Protocol:
    """Byte-stream framing for transfer protocol messages."""

    VERSION = PROTOCOL_VERSION
    HEADER_FORMAT = "!BHI"
    HEADER_SIZE = struct.calcsize(HEADER_FORMAT)
    CHUNK_INDEX_FORMAT = "!I"
    CHUNK_INDEX_SIZE = struct.calcsize(CHUNK_INDEX_FORMAT)
    MAX_PAYLOAD_SIZE = MAX_MESSAGE_SIZE

    @staticmethod
    def pack_message(message: Message) -> bytes:
        """
        Pack a message with protocol header.

        Format:
        - Version: 1 byte (unsigned char)
        - Message Type: 2 bytes (unsigned short, big-endian)
        - Payload Length: 4 bytes (unsigned int, big-endian)
        - Payload: variable length

        Raises:
            NetworkError: If the payload exceeds MAX_PAYLOAD_SIZE
        """
        if isinstance(message, UnitChunk):
            payload = struct.pack(Protocol.CHUNK_INDEX_FORMAT, message.index) + message.data
        else:
            payload = json.dumps(to_wire(message), separators=(",", ":")).encode("utf-8")

        if len(payload) > Protocol.MAX_PAYLOAD_SIZE:
            raise NetworkError(
                ErrorCode.E207_MESSAGE_TOO_LARGE,
                f"Payload too large: {len(payload)} bytes",
                {"size": len(payload), "max_size": Protocol.MAX_PAYLOAD_SIZE},
            )

        header = struct.pack(
            Protocol.HEADER_FORMAT, Protocol.VERSION, int(message.MSG_TYPE), len(payload)
        )
        return header + payload

    @staticmethod
    def parse_header(header: bytes) -> Tuple[MessageType, int]:
        """
        Validate a header and return (message type, payload length).

        Raises:
            NetworkError: If version, type or length is invalid
        """
        version, msg_type_int, length = struct.unpack(Protocol.HEADER_FORMAT, header)

        if version != Protocol.VERSION:
            raise NetworkError(
                ErrorCode.E206_INVALID_MESSAGE,
                f"Unsupported protocol version: {version}",
                {"version": version, "expected": Protocol.VERSION},
            )

        if length > Protocol.MAX_PAYLOAD_SIZE:
            raise NetworkError(
                ErrorCode.E207_MESSAGE_TOO_LARGE,
                f"Payload too large: {length} bytes",
                {"size": length, "max_size": Protocol.MAX_PAYLOAD_SIZE},
            )

        try:
            msg_type = MessageType(msg_type_int)
        except ValueError:
            raise NetworkError(
                ErrorCode.E206_INVALID_MESSAGE,
                f"Invalid message type: {msg_type_int}",
                {"type": msg_type_int},
            )

        return msg_type, length

    @staticmethod
    def decode_payload(msg_type: MessageType, payload: bytes) -> Message:
        """
        Decode the payload of a framed message.

        Raises:
            NetworkError: If the payload does not match the message type
        """
        if msg_type == MessageType.UNIT_CHUNK:
            if len(payload) < Protocol.CHUNK_INDEX_SIZE:
                raise _invalid("Chunk payload too short", size=len(payload))
            (index,) = struct.unpack(
                Protocol.CHUNK_INDEX_FORMAT, payload[: Protocol.CHUNK_INDEX_SIZE]
            )
            return UnitChunk(index=index, data=payload[Protocol.CHUNK_INDEX_SIZE :])

        try:
            decoded = json.loads(payload.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise _invalid(f"Failed to parse message: {e}", error=str(e))

        message = from_wire(decoded)
        if message.MSG_TYPE != msg_type:
            raise _invalid(
                f"Header type {msg_type.name} does not match payload type {message.TYPE}",
                header=msg_type.name,
            )
        return message

