"""
Tests for session establishment.

Created by orpheus497
"""

import asyncio

import pytest

from ferry.errors import ConnectFailedError, ConnectTimeoutError, ErrorCode
from ferry.establisher import SessionEstablisher
from ferry.protocol import UnitEnd
from ferry.transport import MemoryTransport, PeerTransport, TcpTransport


class HangingTransport(PeerTransport):
    """A transport whose connect phase never completes."""

    async def start(self) -> str:
        self.address = "hang://local"
        return self.address

    async def stop(self) -> None:
        self._end_listen()

    async def connect(self, address: str):
        await asyncio.sleep(3600)


@pytest.mark.asyncio
class TestSessionEstablisher:
    """Test connect outcomes over the memory and TCP transports."""

    async def test_connect_and_accept(self, make_establishers):
        sender, receiver = make_establishers()
        address = await sender.start()

        session = await receiver.connect(address)
        accepted = await sender.listen().__anext__()

        await session.send(UnitEnd(0))
        assert await accepted.receive() == UnitEnd(0)
        await sender.stop()

    async def test_start_is_idempotent(self, make_establishers):
        sender, _receiver = make_establishers()
        first = await sender.start()
        assert await sender.start() == first
        await sender.stop()
        assert sender.address is None

    async def test_unreliable_rejected(self, make_establishers):
        sender, receiver = make_establishers()
        address = await sender.start()
        with pytest.raises(ValueError):
            await receiver.connect(address, reliable=False)

    async def test_unknown_peer(self, make_establishers):
        _sender, receiver = make_establishers()
        with pytest.raises(ConnectFailedError) as exc_info:
            await receiver.connect("memory://offline")
        assert exc_info.value.code == ErrorCode.E201_CONNECT_FAILED
        assert exc_info.value.details["peer"] == "memory://offline"

    async def test_malformed_address(self):
        establisher = SessionEstablisher(TcpTransport(), connect_timeout=2)
        with pytest.raises(ConnectFailedError):
            await establisher.connect("nonsense")

    async def test_timeout(self):
        establisher = SessionEstablisher(HangingTransport(), connect_timeout=0.05)
        with pytest.raises(ConnectTimeoutError) as exc_info:
            await establisher.connect("hang://remote")
        assert exc_info.value.code == ErrorCode.E202_CONNECT_TIMEOUT
        assert exc_info.value.details["timeout"] == 0.05

    async def test_tcp_refused(self):
        listener = TcpTransport(host="127.0.0.1", port=0)
        address = await listener.start()
        await listener.stop()

        establisher = SessionEstablisher(TcpTransport(), connect_timeout=2)
        with pytest.raises(ConnectFailedError):
            await establisher.connect(address)

    async def test_listen_ends_on_stop(self, memory_network):
        establisher = SessionEstablisher(MemoryTransport(memory_network, "solo"))
        await establisher.start()
        await establisher.stop()
        assert [s async for s in establisher.listen()] == []
