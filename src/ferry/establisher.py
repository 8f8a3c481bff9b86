"""
Ferry - Session establishment.

Created by orpheus497

Wraps a PeerTransport with a connect-phase timeout and maps transport
failures onto the ConnectFailed / ConnectTimeout error taxonomy.
"""

import asyncio
import logging
from typing import AsyncIterator, Optional

from .constants import CONNECT_TIMEOUT
from .errors import ConnectFailedError, ConnectTimeoutError
from .transport import PeerTransport, Session

logger = logging.getLogger(__name__)


class SessionEstablisher:
    """Opens direct sessions between a sender and a receiver.

    The sender calls start() and consumes listen(); the receiver calls
    connect() with the address it resolved from the directory.
    """

    def __init__(self, transport: PeerTransport, connect_timeout: float = CONNECT_TIMEOUT):
        self.transport = transport
        self.connect_timeout = connect_timeout
        self.address: Optional[str] = None

    async def start(self) -> str:
        """Begin accepting sessions; returns the address to advertise."""
        if self.address is None:
            self.address = await self.transport.start()
        return self.address

    async def connect(self, peer_address: str, reliable: bool = True) -> Session:
        """
        Open a session to a listening sender.

        Args:
            peer_address: Address the sender advertised
            reliable: Must be True; chunks carry no offset, so only ordered
                reliable channels can carry a transfer

        Returns:
            An open Session

        Raises:
            ValueError: If an unreliable channel is requested
            ConnectTimeoutError: If the connect phase exceeds connect_timeout
            ConnectFailedError: If the peer is unreachable or the address is bad
        """
        if not reliable:
            raise ValueError("Only reliable ordered sessions are supported")

        logger.info(f"Connecting to {peer_address}")
        try:
            session = await asyncio.wait_for(
                self.transport.connect(peer_address), timeout=self.connect_timeout
            )
        except asyncio.TimeoutError:
            raise ConnectTimeoutError(
                f"No session to {peer_address} after {self.connect_timeout}s",
                {"peer": peer_address, "timeout": self.connect_timeout},
            )
        except (OSError, ValueError) as e:
            raise ConnectFailedError(
                f"Could not connect to {peer_address}: {e}",
                {"peer": peer_address, "error": str(e)},
            )

        logger.info(f"Session {session.session_id} open to {peer_address}")
        return session

    async def listen(self) -> AsyncIterator[Session]:
        """Yield incoming sessions until stop() is called."""
        async for session in self.transport.listen():
            logger.info(f"Accepted session {session.session_id} from {session.peer_address}")
            yield session

    async def stop(self) -> None:
        await self.transport.stop()
        self.address = None
