"""
Ferry - File Transfer Protocol Engine

This module frames a set of files into the transfer message sequence,
paces the send side, and reassembles files on the receive side. Files
are held in memory; nothing spills to disk until ReceivedFile.save().

Author: orpheus497
Version: 1.0.0
"""

import asyncio
import logging
import mimetypes
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence

from .constants import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_MIME_TYPE,
    DEFAULT_PACE_DELAY,
    MAX_CHUNK_SIZE,
    MAX_FILE_SIZE,
    MAX_NAME_LENGTH,
)
from .errors import ErrorCode, FileTransferError, TransferIncompleteError
from .protocol import Message, SetComplete, UnitChunk, UnitEnd, UnitStart
from .rate_limiter import TokenBucket
from .transport import Session
from .utils import format_file_size, sanitize_filename

logger = logging.getLogger(__name__)


def split_chunks(data: bytes, chunk_size: int) -> Iterator[bytes]:
    """Yield consecutive slices of at most chunk_size bytes. Empty data yields nothing."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    for offset in range(0, len(data), chunk_size):
        yield data[offset : offset + chunk_size]


def reassemble(chunks: Iterable[bytes]) -> bytes:
    """Concatenate chunks in the order given."""
    return b"".join(chunks)


@dataclass
class TransferUnit:
    """One file offered for transfer.

    Attributes:
        name: File name shown to the receiver
        data: File contents
        mime: MIME type hint
    """

    name: str
    data: bytes
    mime: str = DEFAULT_MIME_TYPE

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_path(cls, path: Path, max_file_size: int = MAX_FILE_SIZE) -> "TransferUnit":
        """Load a file from disk.

        Raises:
            FileTransferError: If the file is missing, not a regular file,
                or larger than max_file_size
        """
        path = Path(path)
        if not path.exists():
            raise FileTransferError(ErrorCode.E003_FILE_NOT_FOUND, f"File not found: {path}")

        if not path.is_file():
            raise FileTransferError(ErrorCode.E002_INVALID_ARGUMENT, f"Not a file: {path}")

        file_size = path.stat().st_size
        if file_size > max_file_size:
            raise FileTransferError(
                ErrorCode.E601_FILE_TOO_LARGE,
                f"File too large: {format_file_size(file_size)} > {format_file_size(max_file_size)}",
                {"path": str(path), "size": file_size, "max_size": max_file_size},
            )

        mime, _encoding = mimetypes.guess_type(path.name)
        return cls(name=path.name, data=path.read_bytes(), mime=mime or DEFAULT_MIME_TYPE)


def build_units(paths: Sequence[Path], max_file_size: int = MAX_FILE_SIZE) -> List[TransferUnit]:
    """Load files in the given order; that order becomes the unit index."""
    if not paths:
        raise FileTransferError(ErrorCode.E002_INVALID_ARGUMENT, "No files selected")
    return [TransferUnit.from_path(Path(p), max_file_size) for p in paths]


class SendState(Enum):
    """Per-unit send states, entered strictly in this order."""

    PENDING = "pending"
    ANNOUNCING = "announcing"
    STREAMING = "streaming"
    FINISHING = "finishing"
    DONE = "done"


class SendEngine:
    """Sends a set of units over one session, one unit at a time.

    Attributes:
        units: Units in send order
        states: Current SendState of each unit
        bytes_sent: Payload bytes acknowledged by the session so far
        units_sent: Units whose unit-end has been sent
    """

    def __init__(
        self,
        units: Sequence[TransferUnit],
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        pace_delay: float = DEFAULT_PACE_DELAY,
        max_rate: int = 0,
        progress_callback: Optional[Callable[[TransferUnit, int], None]] = None,
    ):
        """
        Args:
            units: Files to send, in order
            chunk_size: Bytes per unit-chunk message
            pace_delay: Seconds to sleep after each chunk (0 still yields)
            max_rate: Cap in bytes per second, 0 for no cap
            progress_callback: Called as (unit, percent) after each chunk

        Raises:
            FileTransferError: If chunk_size is out of range or no units given
        """
        if not units:
            raise FileTransferError(ErrorCode.E002_INVALID_ARGUMENT, "No files to send")

        if not 0 < chunk_size <= MAX_CHUNK_SIZE:
            raise FileTransferError(
                ErrorCode.E002_INVALID_ARGUMENT,
                f"Chunk size must be between 1 and {MAX_CHUNK_SIZE}: {chunk_size}",
                {"chunk_size": chunk_size},
            )

        self.units = list(units)
        self.chunk_size = chunk_size
        self.pace_delay = pace_delay
        self.progress_callback = progress_callback

        self.states: List[SendState] = [SendState.PENDING] * len(self.units)
        self.unit_bytes_sent: List[int] = [0] * len(self.units)
        self.bytes_sent = 0
        self.units_sent = 0
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None

        self.bucket: Optional[TokenBucket] = None
        if max_rate > 0:
            self.bucket = TokenBucket(max(max_rate, chunk_size), max_rate)

    @property
    def total_bytes(self) -> int:
        return sum(unit.size for unit in self.units)

    def messages(self) -> Iterator[Message]:
        """Yield the full message sequence, advancing unit states as it goes."""
        total = len(self.units)

        for index, unit in enumerate(self.units):
            self.states[index] = SendState.ANNOUNCING
            yield UnitStart(name=unit.name, size=unit.size, mime=unit.mime, index=index, total=total)

            self.states[index] = SendState.STREAMING
            for chunk in split_chunks(unit.data, self.chunk_size):
                yield UnitChunk(index=index, data=chunk)

            self.states[index] = SendState.FINISHING
            yield UnitEnd(index=index)
            self.states[index] = SendState.DONE

        yield SetComplete()

    @staticmethod
    def percent(sent: int, size: int) -> int:
        if size <= 0:
            return 100
        return min(100, round(sent / size * 100))

    async def run(self, session: Session) -> None:
        """
        Send every unit followed by set-complete.

        Raises:
            ChannelError: If the session closes or fails mid-transfer
        """
        self.start_time = time.time()
        logger.info(
            f"Sending {len(self.units)} file(s), {format_file_size(self.total_bytes)} "
            f"to {session.peer_address}"
        )

        for message in self.messages():
            await session.send(message)

            if isinstance(message, UnitChunk):
                unit = self.units[message.index]
                self.unit_bytes_sent[message.index] += len(message.data)
                self.bytes_sent += len(message.data)
                self._report(unit, self.percent(self.unit_bytes_sent[message.index], unit.size))
                logger.debug(f"Sent chunk of {len(message.data)} bytes for unit {message.index}")

                if self.bucket is not None:
                    await self.bucket.wait(len(message.data))
                await asyncio.sleep(self.pace_delay)

            elif isinstance(message, UnitEnd):
                unit = self.units[message.index]
                self.units_sent += 1
                if unit.size == 0:
                    self._report(unit, 100)
                logger.info(f"Sent {unit.name} ({message.index + 1}/{len(self.units)})")

        self.end_time = time.time()
        logger.info(f"Transfer to {session.peer_address} complete")

    def _report(self, unit: TransferUnit, percent: int) -> None:
        if self.progress_callback is None:
            return
        try:
            self.progress_callback(unit, percent)
        except Exception as e:
            logger.error(f"Progress callback error: {e}")

    def get_progress(self) -> Dict[str, Any]:
        """Get transfer progress information.

        Returns:
            Dictionary with progress details
        """
        if self.start_time is None:
            return {"status": "not_started", "total_files": len(self.units)}

        done = self.units_sent == len(self.units)
        elapsed = (self.end_time or time.time()) - self.start_time
        speed = self.bytes_sent / elapsed if elapsed > 0 else 0

        return {
            "status": "complete" if done else "in_progress",
            "files_done": self.units_sent,
            "total_files": len(self.units),
            "percentage": self.percent(self.bytes_sent, self.total_bytes),
            "bytes_transferred": self.bytes_sent,
            "total_bytes": self.total_bytes,
            "elapsed_seconds": round(elapsed, 2),
            "speed_bytes_per_sec": round(speed, 2),
        }


@dataclass
class ReceiveBuffer:
    """Chunks collected for the unit that is currently open."""

    start: UnitStart
    chunks: List[bytes] = field(default_factory=list)
    received: int = 0

    @property
    def index(self) -> int:
        return self.start.index

    def append(self, data: bytes) -> None:
        self.chunks.append(data)
        self.received += len(data)

    def seal(self) -> "ReceivedFile":
        return ReceivedFile(
            name=self.start.name,
            declared_size=self.start.size,
            mime=self.start.mime,
            index=self.start.index,
            data=reassemble(self.chunks),
        )


@dataclass
class ReceivedFile:
    """A completed file. Metadata is as the sender declared it."""

    name: str
    declared_size: int
    mime: str
    index: int
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def size_mismatch(self) -> bool:
        return self.size != self.declared_size

    def save(self, directory: Path) -> Path:
        """Write the file into directory without overwriting existing files.

        The sender's name is sanitized first, so it cannot escape directory.
        """
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)

        name = sanitize_filename(self.name[:MAX_NAME_LENGTH])
        target = directory / name
        stem, suffix = target.stem, target.suffix
        counter = 1
        while target.exists():
            target = directory / f"{stem} ({counter}){suffix}"
            counter += 1

        target.write_bytes(self.data)
        logger.info(f"Saved {self.name} to {target}")
        return target


@dataclass
class TransferAnomaly:
    """A non-fatal protocol event reported alongside the result."""

    code: ErrorCode
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code.value, "message": self.message, "details": self.details}


@dataclass
class TransferResult:
    """Files received so far, in arrival order."""

    files: List[ReceivedFile] = field(default_factory=list)
    complete: bool = False
    anomalies: List[TransferAnomaly] = field(default_factory=list)

    @property
    def names(self) -> List[str]:
        return [f.name for f in self.files]

    @property
    def total_bytes(self) -> int:
        return sum(f.size for f in self.files)

    def anomalies_with(self, code: ErrorCode) -> List[TransferAnomaly]:
        return [a for a in self.anomalies if a.code == code]


class ReceiveEngine:
    """Reassembles files from the transfer message sequence.

    Protocol violations never raise; they are logged and recorded as
    anomalies, and processing continues with the next message.
    """

    def __init__(self, progress_callback: Optional[Callable[[UnitStart, int], None]] = None):
        self.progress_callback = progress_callback
        self.result = TransferResult()
        self.buffer: Optional[ReceiveBuffer] = None
        self.finished = False
        self.last_index = -1

    def handle(self, message: Message) -> None:
        """Apply one message to the receive state."""
        if self.finished:
            self._record(
                ErrorCode.E606_PROTOCOL_VIOLATION,
                "Message after set-complete ignored",
                type=getattr(message, "TYPE", type(message).__name__),
            )
            return

        if isinstance(message, UnitStart):
            self._on_unit_start(message)
        elif isinstance(message, UnitChunk):
            self._on_unit_chunk(message)
        elif isinstance(message, UnitEnd):
            self._on_unit_end(message)
        elif isinstance(message, SetComplete):
            self._on_set_complete()
        else:
            self._record(
                ErrorCode.E606_PROTOCOL_VIOLATION,
                "Unknown message ignored",
                type=type(message).__name__,
            )

    def _on_unit_start(self, message: UnitStart) -> None:
        if self.buffer is not None:
            self._abandon_buffer("Unit replaced by a new unit-start before its unit-end")

        if message.index <= self.last_index:
            self._record(
                ErrorCode.E606_PROTOCOL_VIOLATION,
                f"Unit index {message.index} is not ascending",
                index=message.index,
                previous=self.last_index,
            )

        self.last_index = max(self.last_index, message.index)
        self.buffer = ReceiveBuffer(start=message)
        logger.info(
            f"Receiving {message.name} ({message.index + 1}/{message.total}, "
            f"{format_file_size(message.size)})"
        )

    def _on_unit_chunk(self, message: UnitChunk) -> None:
        if self.buffer is None or self.buffer.index != message.index:
            self._record(
                ErrorCode.E606_PROTOCOL_VIOLATION,
                f"Chunk for unit {message.index} with no open buffer dropped",
                index=message.index,
                size=len(message.data),
            )
            return

        self.buffer.append(message.data)
        self._report(self.buffer.start, SendEngine.percent(self.buffer.received, self.buffer.start.size))

    def _on_unit_end(self, message: UnitEnd) -> None:
        if self.buffer is None or self.buffer.index != message.index:
            self._record(
                ErrorCode.E606_PROTOCOL_VIOLATION,
                f"unit-end for unit {message.index} without a matching unit-start",
                index=message.index,
            )
            return

        start = self.buffer.start
        received = self.buffer.seal()
        self.buffer = None
        self.result.files.append(received)

        if received.size_mismatch:
            self._record(
                ErrorCode.E603_SIZE_MISMATCH,
                f"{received.name}: received {received.size} bytes, declared {received.declared_size}",
                index=received.index,
                received=received.size,
                declared=received.declared_size,
            )

        if received.size == 0:
            self._report(start, 100)
        logger.info(f"Received {received.name} ({format_file_size(received.size)})")

    def _on_set_complete(self) -> None:
        if self.buffer is not None:
            self._abandon_buffer("set-complete arrived before unit-end")
        self.finished = True
        self.result.complete = True
        logger.info(f"Transfer complete: {len(self.result.files)} file(s)")

    def _abandon_buffer(self, reason: str) -> None:
        buffer = self.buffer
        self.buffer = None
        self._record(
            ErrorCode.E605_PARTIAL_UNIT_ABANDONED,
            f"{buffer.start.name} discarded: {reason}",
            index=buffer.index,
            received=buffer.received,
            declared=buffer.start.size,
        )

    def _record(self, code: ErrorCode, message: str, **details: Any) -> None:
        logger.warning(f"[{code.value}] {message}")
        self.result.anomalies.append(TransferAnomaly(code, message, details))

    def _report(self, start: UnitStart, percent: int) -> None:
        if self.progress_callback is None:
            return
        try:
            self.progress_callback(start, percent)
        except Exception as e:
            logger.error(f"Progress callback error: {e}")

    async def run(self, session: Session) -> TransferResult:
        """
        Consume messages until set-complete.

        Returns:
            The complete TransferResult

        Raises:
            TransferIncompleteError: If the session ends first; carries the
                partial result with the in-flight unit discarded
        """
        async for message in session:
            self.handle(message)
            if self.finished:
                return self.result

        if self.buffer is not None:
            self._abandon_buffer("session ended mid-unit")

        details: Dict[str, Any] = {
            "peer": session.peer_address,
            "files_received": len(self.result.files),
        }
        if session.error is not None:
            details["error"] = session.error.message

        raise TransferIncompleteError(
            f"Session ended after {len(self.result.files)} file(s), before set-complete",
            details,
            result=self.result,
        )
