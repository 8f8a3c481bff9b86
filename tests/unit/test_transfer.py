"""
Unit tests for ferry.transfer module.

Created by orpheus497

Tests chunking, the send/receive engines, and result handling. Engines
are driven over in-process MemorySession pairs.
"""

import asyncio
import os

import pytest

from ferry.errors import ChannelError, ErrorCode, FileTransferError, TransferIncompleteError
from ferry.protocol import SetComplete, UnitChunk, UnitEnd, UnitStart
from ferry.transfer import (
    ReceiveEngine,
    ReceivedFile,
    SendEngine,
    SendState,
    TransferUnit,
    build_units,
    reassemble,
    split_chunks,
)
from ferry.transport import MemorySession


async def transfer(units, chunk_size=16384, **kwargs):
    """Run both engines over a memory pair; returns (result, send engine)."""
    sender_side, receiver_side = MemorySession.pair("memory://s", "memory://r")
    send_engine = SendEngine(units, chunk_size=chunk_size, **kwargs)
    receive_engine = ReceiveEngine()

    receive_task = asyncio.create_task(receive_engine.run(receiver_side))
    await send_engine.run(sender_side)
    result = await asyncio.wait_for(receive_task, 5)
    return result, send_engine


def start(name="f", size=0, index=0, total=1):
    return UnitStart(name=name, size=size, mime="application/octet-stream", index=index, total=total)


class TestChunking:
    """Test split_chunks and reassemble."""

    def test_fifty_bytes_by_twenty(self):
        data = bytes(range(50))
        chunks = list(split_chunks(data, 20))
        assert [len(c) for c in chunks] == [20, 20, 10]
        assert reassemble(chunks) == data

    def test_exact_multiple(self):
        assert [len(c) for c in split_chunks(b"x" * 40, 20)] == [20, 20]

    def test_empty(self):
        assert list(split_chunks(b"", 20)) == []
        assert reassemble([]) == b""

    def test_bad_chunk_size(self):
        with pytest.raises(ValueError):
            list(split_chunks(b"abc", 0))


class TestTransferUnit:
    """Test loading files from disk."""

    def test_from_path(self, temp_file):
        unit = TransferUnit.from_path(temp_file)
        assert unit.name == "test_file.txt"
        assert unit.data == b"hello ferry\n"
        assert unit.mime == "text/plain"
        assert unit.size == 12

    def test_unknown_mime(self, temp_dir):
        path = temp_dir / "blob.ferryunknown"
        path.write_bytes(b"\x00")
        assert TransferUnit.from_path(path).mime == "application/octet-stream"

    def test_missing_file(self, temp_dir):
        with pytest.raises(FileTransferError) as exc_info:
            TransferUnit.from_path(temp_dir / "nope")
        assert exc_info.value.code == ErrorCode.E003_FILE_NOT_FOUND

    def test_directory_rejected(self, temp_dir):
        with pytest.raises(FileTransferError) as exc_info:
            TransferUnit.from_path(temp_dir)
        assert exc_info.value.code == ErrorCode.E002_INVALID_ARGUMENT

    def test_too_large(self, temp_file):
        with pytest.raises(FileTransferError) as exc_info:
            TransferUnit.from_path(temp_file, max_file_size=4)
        assert exc_info.value.code == ErrorCode.E601_FILE_TOO_LARGE

    def test_build_units_keeps_order(self, temp_dir):
        paths = []
        for name in ["c.txt", "a.txt", "b.txt"]:
            path = temp_dir / name
            path.write_text(name)
            paths.append(path)
        assert [u.name for u in build_units(paths)] == ["c.txt", "a.txt", "b.txt"]

    def test_build_units_empty(self):
        with pytest.raises(FileTransferError):
            build_units([])


class TestSendEngine:
    """Test the send-side message sequence."""

    def test_message_sequence(self):
        engine = SendEngine([TransferUnit("a", b"x" * 50)], chunk_size=20)
        messages = list(engine.messages())

        assert messages[0] == UnitStart(
            name="a", size=50, mime="application/octet-stream", index=0, total=1
        )
        assert [len(m.data) for m in messages[1:4]] == [20, 20, 10]
        assert all(m.index == 0 for m in messages[1:4])
        assert messages[4] == UnitEnd(index=0)
        assert messages[5] == SetComplete()
        assert len(messages) == 6

    def test_empty_unit_has_no_chunks(self):
        engine = SendEngine([TransferUnit("empty", b"")])
        messages = list(engine.messages())
        assert [type(m) for m in messages] == [UnitStart, UnitEnd, SetComplete]

    def test_states_advance_in_order(self):
        engine = SendEngine([TransferUnit("a", b"abc"), TransferUnit("b", b"d")], chunk_size=2)
        seen = []
        for message in engine.messages():
            seen.append((type(message).__name__, list(engine.states)))

        assert seen[0] == ("UnitStart", [SendState.ANNOUNCING, SendState.PENDING])
        assert seen[1] == ("UnitChunk", [SendState.STREAMING, SendState.PENDING])
        assert seen[3] == ("UnitEnd", [SendState.FINISHING, SendState.PENDING])
        assert seen[4] == ("UnitStart", [SendState.DONE, SendState.ANNOUNCING])
        assert engine.states == [SendState.DONE, SendState.DONE]

    def test_rejects_no_units(self):
        with pytest.raises(FileTransferError):
            SendEngine([])

    @pytest.mark.parametrize("chunk_size", [0, -1, 2 * 1024 * 1024])
    def test_rejects_bad_chunk_size(self, chunk_size):
        with pytest.raises(FileTransferError):
            SendEngine([TransferUnit("a", b"x")], chunk_size=chunk_size)

    def test_percent(self):
        assert SendEngine.percent(0, 0) == 100
        assert SendEngine.percent(20, 50) == 40
        assert SendEngine.percent(60, 50) == 100

    def test_progress_before_start(self):
        engine = SendEngine([TransferUnit("a", b"x")])
        assert engine.get_progress() == {"status": "not_started", "total_files": 1}


@pytest.mark.asyncio
class TestEndToEnd:
    """Test send and receive engines together."""

    @pytest.mark.parametrize("chunk_size", [1, 16384, None])
    async def test_single_file_round_trip(self, chunk_size):
        payload = os.urandom(3000)
        result, _engine = await transfer(
            [TransferUnit("data.bin", payload)], chunk_size=chunk_size or len(payload)
        )

        assert result.complete is True
        assert len(result.files) == 1
        assert result.files[0].data == payload
        assert result.files[0].declared_size == len(payload)
        assert result.anomalies == []

    async def test_many_files_in_order(self, sample_units):
        result, engine = await transfer(sample_units, chunk_size=100)

        assert result.names == ["notes.txt", "blob.bin", "empty.dat"]
        assert [f.data for f in result.files] == [u.data for u in sample_units]
        assert [f.index for f in result.files] == [0, 1, 2]
        assert result.files[0].mime == "text/plain"
        assert result.total_bytes == engine.total_bytes

        progress = engine.get_progress()
        assert progress["status"] == "complete"
        assert progress["files_done"] == 3
        assert progress["percentage"] == 100

    async def test_fifty_byte_file_progress(self):
        seen = []
        unit = TransferUnit("fifty.bin", bytes(50))
        result, _engine = await transfer(
            [unit], chunk_size=20, progress_callback=lambda u, pct: seen.append(pct)
        )

        assert seen == [40, 80, 100]
        assert result.files[0].size == 50

    async def test_receive_progress(self):
        sender_side, receiver_side = MemorySession.pair("memory://s", "memory://r")
        seen = []
        receive_engine = ReceiveEngine(lambda start_msg, pct: seen.append((start_msg.name, pct)))

        receive_task = asyncio.create_task(receive_engine.run(receiver_side))
        await SendEngine(
            [TransferUnit("ten", b"0123456789"), TransferUnit("zero", b"")], chunk_size=5
        ).run(sender_side)
        await asyncio.wait_for(receive_task, 5)

        assert seen == [("ten", 50), ("ten", 100), ("zero", 100)]

    async def test_ten_and_zero_byte_files(self):
        result, _engine = await transfer(
            [TransferUnit("ten", b"0123456789"), TransferUnit("zero", b"")], chunk_size=4
        )
        assert [f.size for f in result.files] == [10, 0]
        assert result.files[1].data == b""
        assert result.complete

    async def test_rate_cap_still_delivers(self):
        result, engine = await transfer(
            [TransferUnit("a", b"x" * 4000)], chunk_size=1000, max_rate=1_000_000
        )
        assert engine.bucket is not None
        assert result.files[0].size == 4000

    async def test_callback_errors_do_not_stop_transfer(self):
        def broken(unit, pct):
            raise RuntimeError("display went away")

        result, _engine = await transfer([TransferUnit("a", b"abc")], progress_callback=broken)
        assert result.complete

    async def test_send_on_closed_session(self):
        sender_side, receiver_side = MemorySession.pair("memory://s", "memory://r")
        await receiver_side.close()

        with pytest.raises(ChannelError):
            await SendEngine([TransferUnit("a", b"abc")]).run(sender_side)


@pytest.mark.asyncio
class TestIncompleteTransfers:
    """Test sessions that end before set-complete."""

    async def test_close_mid_unit(self):
        sender_side, receiver_side = MemorySession.pair("memory://s", "memory://r")
        engine = ReceiveEngine()
        task = asyncio.create_task(engine.run(receiver_side))

        await sender_side.send(start("done.txt", 3, 0, 2))
        await sender_side.send(UnitChunk(0, b"abc"))
        await sender_side.send(UnitEnd(0))
        await sender_side.send(start("partial.txt", 10, 1, 2))
        await sender_side.send(UnitChunk(1, b"12345"))
        await sender_side.close()

        with pytest.raises(TransferIncompleteError) as exc_info:
            await asyncio.wait_for(task, 5)

        error = exc_info.value
        assert error.code == ErrorCode.E604_TRANSFER_INCOMPLETE
        assert error.result.names == ["done.txt"]
        assert error.result.complete is False
        assert error.details["files_received"] == 1
        assert error.result.anomalies_with(ErrorCode.E605_PARTIAL_UNIT_ABANDONED)

    async def test_channel_fault_reported(self):
        sender_side, receiver_side = MemorySession.pair("memory://s", "memory://r")
        task = asyncio.create_task(ReceiveEngine().run(receiver_side))

        await sender_side.send(start("a", 5))
        sender_side.abort("cable unplugged")

        with pytest.raises(TransferIncompleteError) as exc_info:
            await asyncio.wait_for(task, 5)
        assert exc_info.value.details["error"] == "cable unplugged"
        assert exc_info.value.result.files == []

    async def test_close_before_anything(self):
        sender_side, receiver_side = MemorySession.pair("memory://s", "memory://r")
        task = asyncio.create_task(ReceiveEngine().run(receiver_side))
        await sender_side.close()

        with pytest.raises(TransferIncompleteError) as exc_info:
            await asyncio.wait_for(task, 5)
        assert exc_info.value.result.files == []


class TestReceiveEngineAnomalies:
    """Protocol violations are recorded, never raised."""

    def test_stray_chunk_then_valid_unit(self):
        engine = ReceiveEngine()
        engine.handle(UnitChunk(0, b"stray"))
        engine.handle(start("a", 3))
        engine.handle(UnitChunk(0, b"abc"))
        engine.handle(UnitEnd(0))
        engine.handle(SetComplete())

        assert engine.result.files[0].data == b"abc"
        assert len(engine.result.anomalies_with(ErrorCode.E606_PROTOCOL_VIOLATION)) == 1
        assert engine.result.complete

    def test_chunk_for_other_index_dropped(self):
        engine = ReceiveEngine()
        engine.handle(start("a", 3, 0, 2))
        engine.handle(UnitChunk(1, b"zzz"))
        engine.handle(UnitChunk(0, b"abc"))
        engine.handle(UnitEnd(0))

        assert engine.result.files[0].data == b"abc"
        assert engine.result.anomalies[0].details["index"] == 1

    def test_size_mismatch_still_delivered(self):
        engine = ReceiveEngine()
        engine.handle(start("a", 100))
        engine.handle(UnitChunk(0, b"short"))
        engine.handle(UnitEnd(0))

        received = engine.result.files[0]
        assert received.data == b"short"
        assert received.size_mismatch
        anomaly = engine.result.anomalies_with(ErrorCode.E603_SIZE_MISMATCH)[0]
        assert anomaly.details == {"index": 0, "received": 5, "declared": 100}

    def test_new_start_abandons_open_unit(self):
        engine = ReceiveEngine()
        engine.handle(start("first", 10, 0, 2))
        engine.handle(UnitChunk(0, b"12345"))
        engine.handle(start("second", 2, 1, 2))
        engine.handle(UnitChunk(1, b"ok"))
        engine.handle(UnitEnd(1))

        assert engine.result.names == ["second"]
        abandoned = engine.result.anomalies_with(ErrorCode.E605_PARTIAL_UNIT_ABANDONED)
        assert abandoned[0].details["received"] == 5

    def test_set_complete_abandons_open_unit(self):
        engine = ReceiveEngine()
        engine.handle(start("a", 10))
        engine.handle(SetComplete())
        assert engine.result.files == []
        assert engine.result.complete
        assert engine.result.anomalies_with(ErrorCode.E605_PARTIAL_UNIT_ABANDONED)

    def test_unmatched_end(self):
        engine = ReceiveEngine()
        engine.handle(UnitEnd(4))
        assert engine.result.anomalies[0].code == ErrorCode.E606_PROTOCOL_VIOLATION

    def test_non_ascending_index_still_opens(self):
        engine = ReceiveEngine()
        for index in (1, 1):
            engine.handle(start(f"u{index}", 1, index, 3))
            engine.handle(UnitChunk(index, b"x"))
            engine.handle(UnitEnd(index))

        assert len(engine.result.files) == 2
        assert len(engine.result.anomalies_with(ErrorCode.E606_PROTOCOL_VIOLATION)) == 1

    def test_messages_after_set_complete_ignored(self):
        engine = ReceiveEngine()
        engine.handle(SetComplete())
        engine.handle(start("late", 1))
        assert engine.result.files == []
        assert engine.buffer is None
        assert engine.result.anomalies[0].to_dict()["code"] == "E606"


class TestReceivedFile:
    """Test saving received files."""

    def test_save(self, temp_dir):
        received = ReceivedFile("a.txt", 3, "text/plain", 0, b"abc")
        path = received.save(temp_dir / "out")
        assert path == temp_dir / "out" / "a.txt"
        assert path.read_bytes() == b"abc"

    def test_save_does_not_overwrite(self, temp_dir):
        received = ReceivedFile("a.txt", 3, "text/plain", 0, b"abc")
        first = received.save(temp_dir)
        second = received.save(temp_dir)
        third = received.save(temp_dir)

        assert first.name == "a.txt"
        assert second.name == "a (1).txt"
        assert third.name == "a (2).txt"

    def test_save_sanitizes_name(self, temp_dir):
        received = ReceivedFile("../../escape.sh", 1, "text/plain", 0, b"x")
        path = received.save(temp_dir)
        assert path.parent == temp_dir
