"""Transfer ports - injected side

Runs inside an injected context. A `TransferPortManager` owns the ports of
one context; each `TransferPort` reassembles buffers pushed by the
controller and streams payloads the controller asks for.

The channel object only needs:

- `binary`: whether raw bytes can be posted
- `async post(payload)`: deliver a payload to the controller
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Tuple

from framectl.transfer.codec import CodecError, decode_message, encode_message
from framectl.transfer.messages import (
    DEFAULT_CHUNK_SIZE,
    PORT_CLOSE,
    PORT_COMMAND,
    PORT_CREATE,
    PORT_EVENT,
    CommandType,
    FileChunk,
    TransferComplete,
    TransferProgress,
    TransferRequest,
    chunk_event,
    complete_event,
    envelope,
    error_event,
    new_port_id,
    new_transfer_id,
    progress_event,
    start_event,
    total_chunks,
)
from framectl.transfer.port import PortClosedError, TransferError
from framectl.transfer.receiver import ReceivingTransfer

logger = logging.getLogger("framectl.transfer.remote")

# (command type, selector, option) -> (data, filename, mime type)
PayloadReader = Callable[[CommandType, str, Optional[str]], Awaitable[Tuple[bytes, str, str]]]

REQUEST_OPTION_FIELDS = {
    CommandType.REQUEST_FILE: "attribute",
    CommandType.REQUEST_IMAGE: "format",
    CommandType.REQUEST_BUFFER: "bufferType",
}


@dataclass
class IncomingBuffer:
    """A fully received buffer, ready to be handed to a remote primitive"""
    transfer_id: str
    filename: str
    mime_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


class TransferPort:
    """Injected end of one transfer port"""

    def __init__(
        self,
        port_id: str,
        channel: Any,
        reader: Optional[PayloadReader] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self.port_id = port_id
        self._channel = channel
        self._reader = reader
        self.chunk_size = chunk_size
        self._incoming: Dict[str, ReceivingTransfer] = {}
        self._buffers: Dict[str, IncomingBuffer] = {}
        self._streaming: Set[str] = set()
        self._cancelled: Set[str] = set()
        self._streams: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def post_event(self, event: Dict[str, Any]) -> None:
        if self._closed:
            raise PortClosedError(self.port_id)
        await self._channel.post(encode_message(envelope(PORT_EVENT, self.port_id, event), self._channel.binary))

    def get_incoming_buffer(self, transfer_id: str) -> Optional[IncomingBuffer]:
        return self._buffers.get(transfer_id)

    def take_incoming_buffer(self, transfer_id: str) -> Optional[IncomingBuffer]:
        return self._buffers.pop(transfer_id, None)

    def incoming_progress(self, transfer_id: str) -> Optional[TransferProgress]:
        transfer = self._incoming.get(transfer_id)
        return transfer.progress() if transfer is not None else None

    async def handle_command(self, command: Dict[str, Any]) -> None:
        """Apply one command from the controller"""
        if self._closed:
            return
        try:
            command_type = CommandType(command.get("type"))
        except ValueError:
            logger.warning("Unknown transfer command on port %s: %r", self.port_id, command.get("type"))
            return

        if command_type is CommandType.RECEIVE_FILE_START:
            meta = TransferRequest.from_dict(command["meta"])
            self._incoming[meta.transfer_id] = ReceivingTransfer(meta)

        elif command_type is CommandType.RECEIVE_FILE_CHUNK:
            chunk = FileChunk.from_dict(command["chunk"])
            transfer = self._incoming.get(chunk.transfer_id)
            # cancelled or unknown transfers drop their chunks
            if transfer is None:
                return
            transfer.add_chunk(chunk.chunk_index, chunk.data)

        elif command_type is CommandType.RECEIVE_FILE_COMPLETE:
            transfer_id = command["transferId"]
            transfer = self._incoming.pop(transfer_id, None)
            if transfer is None:
                return
            data = transfer.get_data()
            if data is None:
                await self.post_event(error_event(
                    transfer_id,
                    f"Incomplete transfer: {transfer.chunks_received}/{transfer.total_chunks} chunks received",
                ))
                return
            self._buffers[transfer_id] = IncomingBuffer(
                transfer_id, transfer.request.filename, transfer.request.mime_type, data
            )
            await self.post_event(complete_event(TransferComplete(transfer_id, True)))

        elif command_type is CommandType.CANCEL_TRANSFER:
            transfer_id = command["transferId"]
            self._incoming.pop(transfer_id, None)
            if transfer_id in self._streaming:
                self._cancelled.add(transfer_id)

        else:
            task = asyncio.ensure_future(self._stream(command_type, command))
            self._streams.add(task)
            task.add_done_callback(self._streams.discard)

    async def _stream(self, command_type: CommandType, command: Dict[str, Any]) -> None:
        request_id = command.get("requestId")
        selector = command.get("selector", "")
        option = command.get(REQUEST_OPTION_FIELDS[command_type])
        try:
            if self._reader is None:
                raise TransferError("No payload reader on this port")
            data, filename, mime_type = await self._reader(command_type, selector, option)
        except Exception as e:
            event = error_event(None, str(e))
            event["requestId"] = request_id
            await self._post_quietly(event)
            return

        transfer_id = new_transfer_id()
        chunks = total_chunks(len(data), self.chunk_size)
        request = TransferRequest(transfer_id, filename, mime_type, len(data), chunks)
        start = start_event(request)
        start["request"]["requestId"] = request_id
        sent = 0
        self._streaming.add(transfer_id)
        try:
            await self.post_event(start)
            for index in range(chunks):
                if transfer_id in self._cancelled:
                    return
                piece = data[index * self.chunk_size:(index + 1) * self.chunk_size]
                sent += len(piece)
                await self.post_event(chunk_event(FileChunk(transfer_id, index, chunks, piece)))
                await self.post_event(progress_event(TransferProgress(transfer_id, index + 1, chunks, sent, len(data))))
            await self.post_event(complete_event(TransferComplete(transfer_id, True)))
        except PortClosedError:
            logger.debug("Port %s closed while streaming %s", self.port_id, transfer_id)
        finally:
            self._streaming.discard(transfer_id)
            self._cancelled.discard(transfer_id)

    async def _post_quietly(self, event: Dict[str, Any]) -> None:
        try:
            await self.post_event(event)
        except PortClosedError:
            logger.debug("Port %s closed before error could be reported", self.port_id)

    def close(self) -> None:
        self._closed = True
        self._incoming.clear()
        self._buffers.clear()
        for task in list(self._streams):
            task.cancel()


class TransferPortManager:
    """Ports of one injected context"""

    def __init__(self, channel: Any, reader: Optional[PayloadReader] = None, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self._channel = channel
        self._reader = reader
        self._chunk_size = chunk_size
        self._ports: Dict[str, TransferPort] = {}

    async def create_port(self, port_id: Optional[str] = None) -> TransferPort:
        """Create a port and announce it to the controller"""
        port_id = port_id or new_port_id()
        port = TransferPort(port_id, self._channel, self._reader, self._chunk_size)
        self._ports[port_id] = port
        await self._channel.post(encode_message(envelope(PORT_CREATE, port_id), self._channel.binary))
        return port

    def get_port(self, port_id: str) -> Optional[TransferPort]:
        return self._ports.get(port_id)

    async def close_port(self, port_id: str) -> bool:
        port = self._ports.pop(port_id, None)
        if port is None:
            return False
        port.close()
        await self._channel.post(encode_message(envelope(PORT_CLOSE, port_id), self._channel.binary))
        return True

    async def close_all_ports(self) -> None:
        for port_id in list(self._ports):
            await self.close_port(port_id)

    def drop_port(self, port_id: str) -> None:
        """Forget a port the controller already closed"""
        port = self._ports.pop(port_id, None)
        if port is not None:
            port.close()

    async def handle_message(self, payload: Any) -> bool:
        """Route a controller message to its port; returns whether it was ours"""
        try:
            message = decode_message(payload)
        except CodecError:
            return False
        port = self._ports.get(message.get("portId"))
        if port is None:
            return False
        kind = message.get("kind")
        if kind == PORT_COMMAND:
            await port.handle_command(message.get("message") or {})
        elif kind == PORT_CLOSE:
            self.drop_port(port.port_id)
        return True

    def __len__(self) -> int:
        return len(self._ports)
