"""
Ferry - Sessions and peer transports.

Created by orpheus497

A Session is an ordered, reliable message channel between exactly two
endpoints. Transport callbacks are funnelled into a per-session queue so
a single asyncio task can consume messages in arrival order.

Two transports are provided:
- TcpTransport: asyncio streams with the framing from ferry.protocol
- MemoryTransport: in-process pairs on a shared MemoryNetwork
"""

import asyncio
import contextlib
import logging
import secrets
from abc import ABC, abstractmethod
from typing import AsyncIterator, Callable, Dict, List, Optional, Set

from .constants import LOCALHOST
from .errors import ChannelError, NetworkError
from .nat_traversal import NATTraversal
from .protocol import Message, Protocol
from .session_fsm import SessionEvent, SessionState, SessionStateMachine
from .utils import format_address, parse_address

logger = logging.getLogger(__name__)

_END_OF_STREAM = object()


class Session(ABC):
    """One direct channel to a peer.

    Messages are read with ``await session.receive()`` (None once the
    session has ended) or ``async for message in session``. Handlers
    registered with on_message/on_close/on_error are called as events
    arrive, in addition to the queue.
    """

    def __init__(self, peer_address: str):
        self.session_id = secrets.token_hex(6)
        self.peer_address = peer_address
        self.error: Optional[ChannelError] = None

        self.fsm = SessionStateMachine()
        self.fsm.on_open = self._on_open
        self.fsm.on_closed = self._on_closed
        self.fsm.on_error = self._on_error

        self._inbox: asyncio.Queue = asyncio.Queue()
        self._ended = asyncio.Event()
        self._message_handlers: List[Callable[[Message], None]] = []
        self._close_handlers: List[Callable[[], None]] = []
        self._error_handlers: List[Callable[[ChannelError], None]] = []

        self.messages_sent = 0
        self.messages_received = 0

    @property
    def state(self) -> SessionState:
        return self.fsm.get_state()

    @property
    def is_open(self) -> bool:
        return self.fsm.is_open()

    def on_message(self, handler: Callable[[Message], None]) -> None:
        self._message_handlers.append(handler)

    def on_close(self, handler: Callable[[], None]) -> None:
        self._close_handlers.append(handler)

    def on_error(self, handler: Callable[[ChannelError], None]) -> None:
        self._error_handlers.append(handler)

    async def send(self, message: Message) -> None:
        """
        Send one message, waiting on the transport's flow control.

        Raises:
            ChannelError: If the session is not open or the send fails
        """
        if not self.is_open:
            raise ChannelError(
                "Session is not open", {"state": self.state.value, "peer": self.peer_address}
            )

        try:
            await self._transmit(message)
        except (ConnectionError, OSError) as e:
            self._fail(f"Send failed: {e}")
            raise self.error
        self.messages_sent += 1

    async def receive(self) -> Optional[Message]:
        """Return the next message, or None once the session has ended."""
        item = await self._inbox.get()
        if item is _END_OF_STREAM:
            # Leave the marker for any later reader
            self._inbox.put_nowait(_END_OF_STREAM)
            return None
        return item

    def __aiter__(self) -> "Session":
        return self

    async def __anext__(self) -> Message:
        message = await self.receive()
        if message is None:
            raise StopAsyncIteration
        return message

    async def close(self) -> None:
        """Close the session. The peer observes ``closed``."""
        if self.fsm.is_finished():
            return
        self.fsm.transition(SessionEvent.CLOSE_REQUESTED)
        await self._shutdown()

    async def wait_closed(self, timeout: Optional[float] = None) -> bool:
        """Wait until the session ends. Returns False on timeout."""
        try:
            await asyncio.wait_for(self._ended.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    # Transport-side hooks

    def _mark_open(self) -> None:
        self.fsm.transition(SessionEvent.CHANNEL_OPENED)

    def _deliver(self, message: Message) -> None:
        if not self.is_open:
            logger.debug(f"Dropping message on {self.state.value} session {self.session_id}")
            return

        self.messages_received += 1
        self._inbox.put_nowait(message)
        for handler in self._message_handlers:
            try:
                handler(message)
            except Exception as e:
                logger.error(f"Message handler error: {e}")

    def _peer_closed(self) -> None:
        if self.fsm.transition(SessionEvent.PEER_CLOSED):
            logger.info(f"Session {self.session_id} closed by peer {self.peer_address}")

    def _fail(self, reason: str) -> None:
        if self.fsm.is_finished():
            return
        self.error = ChannelError(reason, {"peer": self.peer_address})
        event = (
            SessionEvent.ERROR_OCCURRED
            if self.state == SessionState.OPEN
            else SessionEvent.CONNECT_FAILED
        )
        self.fsm.transition(event, reason)
        logger.warning(f"Session {self.session_id} failed: {reason}")

    def _on_open(self) -> None:
        logger.debug(f"Session {self.session_id} open to {self.peer_address}")

    def _on_error(self, reason: str) -> None:
        if self.error is None:
            self.error = ChannelError(reason, {"peer": self.peer_address})
        for handler in self._error_handlers:
            try:
                handler(self.error)
            except Exception as e:
                logger.error(f"Error handler error: {e}")
        self._on_closed()

    def _on_closed(self) -> None:
        self._inbox.put_nowait(_END_OF_STREAM)
        self._ended.set()

        for handler in self._close_handlers:
            try:
                handler()
            except Exception as e:
                logger.error(f"Close handler error: {e}")

    @abstractmethod
    async def _transmit(self, message: Message) -> None:
        """Put one message on the wire."""

    @abstractmethod
    async def _shutdown(self) -> None:
        """Release the underlying channel after a local close."""

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(id={self.session_id}, peer={self.peer_address}, "
            f"state={self.state.value})"
        )


class StreamSession(Session):
    """Session over an asyncio stream pair using length-prefixed frames."""

    def __init__(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter, peer_address: str
    ):
        super().__init__(peer_address)
        self.reader = reader
        self.writer = writer
        self.bytes_sent = 0
        self.bytes_received = 0
        self._reader_task: Optional[asyncio.Task] = None

    def start(self) -> None:
        """Mark the session open and begin reading frames."""
        self._mark_open()
        self._reader_task = asyncio.create_task(self._read_loop())

    async def _read_loop(self) -> None:
        try:
            while True:
                header = await self.reader.readexactly(Protocol.HEADER_SIZE)
                msg_type, length = Protocol.parse_header(header)
                payload = await self.reader.readexactly(length)
                self.bytes_received += Protocol.HEADER_SIZE + length

                try:
                    message = Protocol.decode_payload(msg_type, payload)
                except NetworkError as e:
                    # Framing is intact, only this message is bad
                    logger.warning(f"Skipping undecodable message from {self.peer_address}: {e}")
                    continue

                self._deliver(message)

        except asyncio.IncompleteReadError as e:
            if e.partial:
                self._fail("Connection closed in the middle of a message")
            else:
                self._peer_closed()
        except NetworkError as e:
            self._fail(f"Invalid frame header: {e}")
        except (ConnectionError, OSError) as e:
            self._fail(f"Receive failed: {e}")

        self._close_writer()

    def _close_writer(self) -> None:
        if not self.writer.is_closing():
            self.writer.close()

    async def _transmit(self, message: Message) -> None:
        data = Protocol.pack_message(message)
        self.writer.write(data)
        await self.writer.drain()
        self.bytes_sent += len(data)

    async def _shutdown(self) -> None:
        self._close_writer()
        with contextlib.suppress(ConnectionError, OSError):
            await self.writer.wait_closed()

        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task


class MemorySession(Session):
    """One end of an in-process session pair."""

    def __init__(self, peer_address: str):
        super().__init__(peer_address)
        self.remote: Optional["MemorySession"] = None

    @classmethod
    def pair(cls, address_a: str, address_b: str) -> "tuple[MemorySession, MemorySession]":
        """Create two linked, open sessions. a.peer_address == address_b."""
        a = cls(peer_address=address_b)
        b = cls(peer_address=address_a)
        a.remote, b.remote = b, a
        a._mark_open()
        b._mark_open()
        return a, b

    async def _transmit(self, message: Message) -> None:
        remote = self.remote
        if remote is None or not remote.is_open:
            raise ConnectionResetError("Peer session is gone")
        remote._deliver(message)
        # Give the receiving task a turn, like a real socket would
        await asyncio.sleep(0)

    async def _shutdown(self) -> None:
        if self.remote is not None:
            self.remote._peer_closed()

    def abort(self, reason: str = "Channel aborted") -> None:
        """Simulate a mid-session channel fault on both ends."""
        self._fail(reason)
        if self.remote is not None:
            self.remote._fail(reason)


class PeerTransport(ABC):
    """A way of reaching peers directly.

    start() begins accepting sessions and returns the address to advertise,
    listen() yields incoming sessions, connect() opens an outgoing one.
    """

    def __init__(self):
        self.address: Optional[str] = None
        self.running = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    @abstractmethod
    async def start(self) -> str:
        """Begin accepting sessions; return the advertised address."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop accepting sessions and close any that are still open."""

    @abstractmethod
    async def connect(self, address: str) -> Session:
        """
        Open a session to a listening peer.

        Raises:
            OSError: If the peer cannot be reached
            ValueError: If the address is malformed
        """

    async def listen(self) -> AsyncIterator[Session]:
        """Yield incoming sessions until the transport stops."""
        while True:
            session = await self._incoming.get()
            if session is None:
                return
            yield session

    def _offer(self, session: Session) -> None:
        self._incoming.put_nowait(session)

    def _end_listen(self) -> None:
        self._incoming.put_nowait(None)


class TcpTransport(PeerTransport):
    """Direct TCP sessions using asyncio streams."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 0,
        advertise_host: str = "",
        nat_traversal: Optional[NATTraversal] = None,
    ):
        """
        Args:
            host: Interface to listen on
            port: Port to listen on (0 = any free port)
            advertise_host: Host to publish instead of auto-detecting one
            nat_traversal: Helper used to discover a reachable public address
        """
        super().__init__()
        self.host = host
        self.port = port
        self.advertise_host = advertise_host
        self.nat_traversal = nat_traversal
        self.server: Optional[asyncio.AbstractServer] = None
        self.sessions: Set[Session] = set()

    async def start(self) -> str:
        self.server = await asyncio.start_server(self._handle_client, self.host, self.port)
        bound_port = self.server.sockets[0].getsockname()[1]
        self.running = True

        if self.advertise_host:
            host, port = self.advertise_host, bound_port
        elif self.nat_traversal is not None:
            host, port = await self.nat_traversal.discover_address_async(bound_port)
        elif self.host not in ("", "0.0.0.0", "::"):
            host, port = self.host, bound_port
        else:
            host, port = NATTraversal.get_local_ip() or LOCALHOST, bound_port

        self.address = format_address(host, port)
        logger.info(f"Listening on {self.host}:{bound_port}, advertising {self.address}")
        return self.address

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        peer = writer.get_extra_info("peername")
        peer_address = format_address(peer[0], peer[1]) if peer else "unknown"
        logger.info(f"Incoming session from {peer_address}")

        session = StreamSession(reader, writer, peer_address)
        self._track(session)
        session.start()
        self._offer(session)

    def _track(self, session: Session) -> None:
        self.sessions.add(session)
        session.on_close(lambda: self.sessions.discard(session))

    async def connect(self, address: str) -> Session:
        host, port = parse_address(address)
        reader, writer = await asyncio.open_connection(host, port)

        session = StreamSession(reader, writer, address)
        self._track(session)
        session.start()
        logger.info(f"Connected to {address}")
        return session

    async def stop(self) -> None:
        self.running = False

        for session in list(self.sessions):
            await session.close()

        if self.server is not None:
            self.server.close()
            await self.server.wait_closed()
            self.server = None
            logger.info("TCP transport stopped")

        if self.nat_traversal is not None:
            self.nat_traversal.cleanup_mappings()

        self._end_listen()


class MemoryNetwork:
    """Registry that lets MemoryTransports find each other in-process."""

    def __init__(self):
        self.listeners: Dict[str, "MemoryTransport"] = {}

    def register(self, address: str, transport: "MemoryTransport") -> None:
        self.listeners[address] = transport

    def unregister(self, address: str) -> None:
        self.listeners.pop(address, None)

    def lookup(self, address: str) -> Optional["MemoryTransport"]:
        return self.listeners.get(address)


class MemoryTransport(PeerTransport):
    """In-process transport; messages are handed over without encoding."""

    def __init__(self, network: MemoryNetwork, name: Optional[str] = None):
        super().__init__()
        self.network = network
        self.name = name or secrets.token_hex(4)
        self.sessions: Set[Session] = set()

    async def start(self) -> str:
        self.address = f"memory://{self.name}"
        self.network.register(self.address, self)
        self.running = True
        return self.address

    async def connect(self, address: str) -> Session:
        target = self.network.lookup(address)
        if target is None or not target.running:
            raise ConnectionRefusedError(f"No listener at {address}")

        local_address = self.address or f"memory://{self.name}"
        local, remote = MemorySession.pair(local_address, address)
        self.sessions.add(local)
        target.sessions.add(remote)
        target._offer(remote)
        return local

    async def stop(self) -> None:
        self.running = False
        if self.address:
            self.network.unregister(self.address)
        for session in list(self.sessions):
            await session.close()
        self.sessions.clear()
        self._end_listen()
