"""
Ferry - Rendezvous front door.

Created by orpheus497

Ties code generation, the directory, session establishment and the
transfer engines together:

    sender:   generate code -> publish(code, address) -> first session -> send
    receiver: resolve(code) -> connect(address) -> receive until set-complete

All state lives on ShareSender / ShareReceiver / TransferSession
instances, so several transfers can run in one process.
"""

import asyncio
import contextlib
import logging
from typing import Callable, Optional, Sequence, Union

from .codes import CodeGenerator
from .constants import DEFAULT_CHUNK_SIZE, DEFAULT_PACE_DELAY, SENDER_LINGER
from .directory import RendezvousDirectory, SenderAdvertisement
from .errors import (
    ChannelError,
    CodeNotFoundError,
    ConnectFailedError,
    ConnectTimeoutError,
    DirectoryError,
)
from .establisher import SessionEstablisher
from .protocol import UnitStart
from .qr_code import build_share_link, parse_share_link
from .transfer import ReceiveEngine, SendEngine, TransferResult, TransferUnit
from .transport import Session

logger = logging.getLogger(__name__)


class TransferSession:
    """One session paired with the engine that drives it."""

    def __init__(self, session: Session, engine: Union[SendEngine, ReceiveEngine]):
        self.session = session
        self.engine = engine

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def is_sender(self) -> bool:
        return isinstance(self.engine, SendEngine)

    async def run(self) -> Optional[TransferResult]:
        """Drive the engine over the session.

        Returns the TransferResult on the receive side, None on the send side.
        """
        if isinstance(self.engine, SendEngine):
            await self.engine.run(self.session)
            return None
        return await self.engine.run(self.session)

    async def close(self) -> None:
        await self.session.close()

    def __repr__(self) -> str:
        role = "send" if self.is_sender else "receive"
        return f"TransferSession({role}, {self.session!r})"


class ShareSender:
    """Offers a set of files under a fresh rendezvous code.

    Only the first receiver to connect gets the files; later sessions are
    closed straight away.
    """

    def __init__(
        self,
        units: Sequence[TransferUnit],
        directory: RendezvousDirectory,
        establisher: SessionEstablisher,
        code_generator: Optional[CodeGenerator] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        pace_delay: float = DEFAULT_PACE_DELAY,
        max_rate: int = 0,
        linger: float = SENDER_LINGER,
        progress_callback: Optional[Callable[[TransferUnit, int], None]] = None,
    ):
        self.units = list(units)
        self.directory = directory
        self.establisher = establisher
        self.code_generator = code_generator or CodeGenerator()
        self.chunk_size = chunk_size
        self.pace_delay = pace_delay
        self.max_rate = max_rate
        self.linger = linger
        self.progress_callback = progress_callback

        # Reject bad engine parameters before anything is published
        self.engine = SendEngine(
            self.units,
            chunk_size=chunk_size,
            pace_delay=pace_delay,
            max_rate=max_rate,
            progress_callback=progress_callback,
        )

        self.code: Optional[str] = None
        self.advertisement: Optional[SenderAdvertisement] = None
        self.transfer: Optional[TransferSession] = None
        self.rejected_sessions = 0
        self._closed = False

    async def publish(self) -> str:
        """
        Start listening and publish (code -> address).

        Returns:
            The rendezvous code to show the receiver

        Raises:
            DirectoryUnavailableError: If the directory cannot be written
        """
        address = await self.establisher.start()
        code = self.code_generator.generate()
        self.advertisement = await self.directory.publish(code, address)
        self.code = code
        logger.info(f"Offering {len(self.units)} file(s) at {address}")
        return code

    def share_link(self, base_url: str, include_peer: bool = True) -> str:
        """Build the out-of-band link for the published code."""
        if self.advertisement is None:
            raise RuntimeError("publish() must be called before share_link()")
        peer = self.advertisement.peer_address if include_peer else None
        return build_share_link(base_url, self.advertisement.code, peer)

    async def serve(self, timeout: Optional[float] = None) -> TransferSession:
        """
        Wait for the first receiver, send every file, then shut down.

        Args:
            timeout: Seconds to wait for a receiver (None waits forever)

        Returns:
            The completed TransferSession

        Raises:
            ConnectTimeoutError: If nobody connects within timeout
            ChannelError: If the session fails during the transfer
        """
        if self.code is None:
            await self.publish()

        loop = asyncio.get_running_loop()
        first: asyncio.Future = loop.create_future()
        accept_task = asyncio.create_task(self._accept(first))

        try:
            try:
                session = await asyncio.wait_for(asyncio.shield(first), timeout)
            except asyncio.TimeoutError:
                raise ConnectTimeoutError(
                    f"No receiver connected within {timeout}s", {"code": self.code}
                )

            self.transfer = TransferSession(session, self.engine)
            await self.transfer.run()

            # Leave the receiver time to drain, it normally closes first
            if not await session.wait_closed(self.linger):
                logger.debug("Receiver did not close within linger period")
            await session.close()
            return self.transfer

        finally:
            accept_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await accept_task
            await self.close()

    async def _accept(self, first: asyncio.Future) -> None:
        async for session in self.establisher.listen():
            if not first.done():
                first.set_result(session)
                continue

            self.rejected_sessions += 1
            logger.warning(f"Closing extra session from {session.peer_address}")
            await session.close()

        if not first.done():
            first.set_exception(ChannelError("Sender stopped before a receiver connected"))

    async def close(self) -> None:
        """Withdraw the code and stop accepting sessions."""
        if self._closed:
            return
        self._closed = True

        if self.code is not None:
            try:
                await self.directory.withdraw(self.code)
            except DirectoryError as e:
                logger.warning(f"Could not withdraw code: {e}")

        await self.establisher.stop()


class ShareReceiver:
    """Resolves a code (or link) and receives the files it points at."""

    def __init__(
        self,
        directory: RendezvousDirectory,
        establisher: SessionEstablisher,
        code_generator: Optional[CodeGenerator] = None,
        progress_callback: Optional[Callable[[UnitStart, int], None]] = None,
    ):
        self.directory = directory
        self.establisher = establisher
        self.code_generator = code_generator or CodeGenerator()
        self.progress_callback = progress_callback
        self.transfer: Optional[TransferSession] = None

    def normalize_code(self, raw: str) -> str:
        """
        Clean a typed code.

        Raises:
            CodeNotFoundError: If it cannot be a valid code; no lookup is made
        """
        code = self.code_generator.normalize(raw)
        if not self.code_generator.is_valid(code):
            raise CodeNotFoundError(
                "Invalid code",
                {"expected_length": self.code_generator.length},
            )
        return code

    async def receive(self, code: str) -> TransferResult:
        """
        Resolve a code, connect, and receive every file.

        Raises:
            CodeNotFoundError: If the code is invalid, unknown or expired
            DirectoryUnavailableError: If the directory cannot be read
            ConnectFailedError / ConnectTimeoutError: If the sender is unreachable
            TransferIncompleteError: If the session ends before set-complete
        """
        code = self.normalize_code(code)
        address = await self.directory.resolve(code)
        return await self.receive_from(address)

    async def receive_link(self, link: str) -> TransferResult:
        """
        Receive from a share link or a bare code.

        A link carrying the sender's address is tried directly first; if
        that address is unreachable the code is resolved instead.
        """
        parsed = parse_share_link(link)
        if parsed.peer_address is None:
            return await self.receive(parsed.code)

        code = self.normalize_code(parsed.code)
        try:
            session = await self.establisher.connect(parsed.peer_address)
        except (ConnectFailedError, ConnectTimeoutError) as e:
            logger.warning(f"Direct connect from link failed, resolving code instead: {e}")
            address = await self.directory.resolve(code)
            return await self.receive_from(address)

        return await self._run(session)

    async def receive_from(self, peer_address: str) -> TransferResult:
        """Connect to a known sender address and receive every file."""
        session = await self.establisher.connect(peer_address)
        return await self._run(session)

    async def _run(self, session: Session) -> TransferResult:
        self.transfer = TransferSession(session, ReceiveEngine(self.progress_callback))
        try:
            return await self.transfer.run()
        finally:
            await session.close()

    async def close(self) -> None:
        await self.establisher.stop()
