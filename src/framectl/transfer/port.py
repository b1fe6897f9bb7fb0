"""Transfer ports - controller side

A transfer port is a session over the host message channel, bound to one
(tab, frame). The injected side announces a port with a PORT_CREATE
envelope; the controller then drives it with commands and receives events.

## Sending (controller -> injected)

```
send_buffer(data)
  ├── receive-file-start  {transferId, filename, mimeType, size, chunks}
  ├── receive-file-chunk  x chunks, index order
  └── receive-file-complete
```

## Requesting (injected -> controller)

`request_file` / `request_image` / `request_buffer` send a command tagged
with a request id. The injected side answers with `transfer-start` (echoing
the request id), chunk and progress events, and finally `transfer-complete`
or `error`. The returned awaitable settles on that transfer's outcome.

Closing a port discards every in-flight transfer. Waiters that have not
settled fail with `PortClosedError`.
"""

import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional

from framectl.core.events import DisposableStore, Emitter
from framectl.host import ChannelMessage, HostSurface
from framectl.transfer.codec import CodecError, decode_message, encode_message
from framectl.transfer.messages import (
    DEFAULT_CHUNK_SIZE,
    PORT_CLOSE,
    PORT_COMMAND,
    PORT_CREATE,
    PORT_EVENT,
    EventType,
    FileChunk,
    TransferComplete,
    TransferProgress,
    TransferRequest,
    cancel_command,
    chunk_command,
    complete_command,
    envelope,
    new_transfer_id,
    request_buffer_command,
    request_file_command,
    request_image_command,
    start_command,
    total_chunks,
)
from framectl.transfer.receiver import ReceivingTransfer

logger = logging.getLogger("framectl.transfer")

Sender = Callable[[Any], Awaitable[None]]


class TransferError(Exception):
    """Base error for transfer ports"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class PortClosedError(TransferError):
    """The port was closed"""

    def __init__(self, port_id: str):
        super().__init__(f"Transfer port {port_id} is closed")
        self.port_id = port_id


class TransferFailedError(TransferError):
    """A single transfer failed on the remote side"""

    def __init__(self, transfer_id: Optional[str], error: str):
        super().__init__(f"Transfer {transfer_id} failed: {error}")
        self.transfer_id = transfer_id
        self.error = error


class PortNotFoundError(TransferError):
    def __init__(self, port_id: str):
        super().__init__(f"Transfer port {port_id} not found")
        self.port_id = port_id


class TransferPortConnection:
    """Controller end of one transfer port

    Args:
        port_id: id announced by the injected side
        tab_id: tab the port is bound to
        frame_id: frame the port is bound to
        sender: coroutine function posting an encoded payload to the frame
        binary: whether the channel carries raw bytes
        chunk_size: default chunk size for `send_buffer`
    """

    def __init__(
        self,
        port_id: str,
        tab_id: int,
        frame_id: int,
        sender: Sender,
        binary: bool = False,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self.port_id = port_id
        self.tab_id = tab_id
        self.frame_id = frame_id
        self.chunk_size = chunk_size
        self._sender = sender
        self._binary = binary
        self._closed = False

        self._transfers: Dict[str, ReceivingTransfer] = {}
        self._completed: Dict[str, bytes] = {}
        self._pending_requests: Dict[str, asyncio.Future] = {}
        self._waiters: Dict[str, List[asyncio.Future]] = {}
        self._outgoing: Dict[str, Optional[asyncio.Future]] = {}

        self.on_transfer_start: Emitter[TransferRequest] = Emitter("transfer-start")
        self.on_chunk: Emitter[FileChunk] = Emitter("chunk")
        self.on_progress: Emitter[TransferProgress] = Emitter("progress")
        self.on_transfer_complete: Emitter[TransferComplete] = Emitter("transfer-complete")
        self.on_error: Emitter[TransferFailedError] = Emitter("transfer-error")
        self.on_closed: Emitter["TransferPortConnection"] = Emitter("port-closed")

    @property
    def is_closed(self) -> bool:
        return self._closed

    # =========================================================================
    # Commands
    # =========================================================================

    async def send_command(self, command: Dict[str, Any]) -> None:
        """Post one command to the injected side

        Raises:
            PortClosedError: if the port is closed
        """
        if self._closed:
            raise PortClosedError(self.port_id)
        payload = encode_message(envelope(PORT_COMMAND, self.port_id, command), self._binary)
        await self._sender(payload)

    async def send_buffer(
        self,
        data: bytes,
        filename: str = "",
        mime_type: str = "application/octet-stream",
        chunk_size: Optional[int] = None,
        transfer_id: Optional[str] = None,
        wait_for_ack: bool = False,
    ) -> str:
        """Stream `data` to the injected side

        Args:
            data: payload bytes
            filename: name announced in the start message
            mime_type: MIME type announced in the start message
            chunk_size: bytes per chunk, defaults to the port's chunk size
            transfer_id: id to use instead of a generated one
            wait_for_ack: wait until the injected side confirms reassembly

        Returns:
            The transfer id; the injected side stores the payload under it

        Raises:
            PortClosedError: if the port closes before the transfer is confirmed
            TransferFailedError: if the injected side rejects the transfer or it is cancelled
        """
        chunk_size = chunk_size or self.chunk_size
        transfer_id = transfer_id or new_transfer_id()
        data = bytes(data)
        chunks = total_chunks(len(data), chunk_size)
        meta = TransferRequest(transfer_id, filename, mime_type, len(data), chunks)

        ack = asyncio.get_running_loop().create_future() if wait_for_ack else None
        self._outgoing[transfer_id] = ack
        try:
            await self.send_command(start_command(meta))
            cancelled = False
            for index in range(chunks):
                # cancel_transfer and close both drop the id
                if transfer_id not in self._outgoing:
                    cancelled = True
                    break
                piece = data[index * chunk_size:(index + 1) * chunk_size]
                await self.send_command(chunk_command(FileChunk(transfer_id, index, chunks, piece)))
            if not cancelled:
                await self.send_command(complete_command(transfer_id))
            if ack is not None:
                await ack
            elif cancelled:
                if self._closed:
                    raise PortClosedError(self.port_id)
                raise TransferFailedError(transfer_id, "Transfer cancelled")
        except BaseException:
            self._outgoing.pop(transfer_id, None)
            raise
        logger.debug("Sent %d bytes as %d chunks on port %s (%s)", len(data), chunks, self.port_id, transfer_id)
        return transfer_id

    async def request_file(self, selector: str, attribute: Optional[str] = None) -> bytes:
        return await self._request(request_file_command(selector, attribute))

    async def request_image(self, selector: str, image_format: str = "png") -> bytes:
        return await self._request(request_image_command(selector, image_format))

    async def request_buffer(self, selector: str, buffer_type: str = "arraybuffer") -> bytes:
        return await self._request(request_buffer_command(selector, buffer_type))

    async def _request(self, command: Dict[str, Any]) -> bytes:
        request_id = f"request-{uuid.uuid4()}"
        future = asyncio.get_running_loop().create_future()
        self._pending_requests[request_id] = future
        command["requestId"] = request_id
        try:
            await self.send_command(command)
            return await future
        finally:
            self._pending_requests.pop(request_id, None)

    async def cancel_transfer(self, transfer_id: str) -> None:
        """Cancel a transfer in either direction; its waiters fail with TransferFailedError"""
        self._transfers.pop(transfer_id, None)
        self._settle_outgoing(transfer_id, "Transfer cancelled")
        self._fail_waiters(transfer_id, TransferFailedError(transfer_id, "Transfer cancelled"))
        await self.send_command(cancel_command(transfer_id))

    # =========================================================================
    # State
    # =========================================================================

    def get_transfer_data(self, transfer_id: str) -> Optional[bytes]:
        """Payload of a completed incoming transfer"""
        return self._completed.get(transfer_id)

    def get_transfer_info(self, transfer_id: str) -> Optional[TransferProgress]:
        transfer = self._transfers.get(transfer_id)
        if transfer is None:
            return None
        return transfer.progress()

    @property
    def active_transfer_ids(self) -> List[str]:
        return list(self._transfers)

    async def wait_for_transfer(self, transfer_id: str) -> bytes:
        """Wait for an incoming transfer to complete and return its payload"""
        if transfer_id in self._completed:
            return self._completed[transfer_id]
        if self._closed:
            raise PortClosedError(self.port_id)
        future = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(transfer_id, []).append(future)
        return await future

    def close(self) -> None:
        """Close the port, discarding in-flight transfers"""
        if self._closed:
            return
        self._closed = True
        self._transfers.clear()
        error = PortClosedError(self.port_id)
        requests, self._pending_requests = self._pending_requests, {}
        for future in requests.values():
            if not future.done():
                future.set_exception(error)
        waiters, self._waiters = self._waiters, {}
        for futures in waiters.values():
            for future in futures:
                if not future.done():
                    future.set_exception(error)
        outgoing, self._outgoing = self._outgoing, {}
        for future in outgoing.values():
            if future is not None and not future.done():
                future.set_exception(error)
        self.on_closed.fire(self)
        for emitter in (
            self.on_transfer_start,
            self.on_chunk,
            self.on_progress,
            self.on_transfer_complete,
            self.on_error,
            self.on_closed,
        ):
            emitter.dispose()

    # =========================================================================
    # Events
    # =========================================================================

    def handle_event(self, event: Dict[str, Any]) -> None:
        """Apply one event received from the injected side"""
        if self._closed:
            return
        event_type = event.get("type")

        if event_type == EventType.TRANSFER_START.value:
            request_data = event["request"]
            request = TransferRequest.from_dict(request_data)
            self._transfers[request.transfer_id] = ReceivingTransfer(request)
            future = self._pending_requests.pop(request_data.get("requestId"), None)
            if future is not None:
                self._waiters.setdefault(request.transfer_id, []).append(future)
            self.on_transfer_start.fire(request)

        elif event_type == EventType.CHUNK.value:
            chunk = FileChunk.from_dict(event["chunk"])
            transfer = self._transfers.get(chunk.transfer_id)
            if transfer is None:
                return
            if not transfer.add_chunk(chunk.chunk_index, chunk.data):
                logger.warning(
                    "Dropping chunk %d of %s: out of range (%d chunks)",
                    chunk.chunk_index, chunk.transfer_id, transfer.total_chunks,
                )
                return
            self.on_chunk.fire(chunk)

        elif event_type == EventType.PROGRESS.value:
            self.on_progress.fire(TransferProgress.from_dict(event["progress"]))

        elif event_type == EventType.TRANSFER_COMPLETE.value:
            result = TransferComplete.from_dict(event["result"])
            if result.transfer_id in self._outgoing:
                self._settle_outgoing(result.transfer_id, None if result.success else result.error or "Transfer failed")
                self.on_transfer_complete.fire(result)
                return
            transfer = self._transfers.pop(result.transfer_id, None)
            if not result.success:
                self._fail(result.transfer_id, result.error or "Transfer failed")
                return
            data = result.data
            if data is None and transfer is not None:
                data = transfer.get_data()
            if data is None:
                self._fail(result.transfer_id, "Transfer completed with missing chunks")
                return
            self._completed[result.transfer_id] = data
            result.data = data
            for future in self._waiters.pop(result.transfer_id, []):
                if not future.done():
                    future.set_result(data)
            self.on_transfer_complete.fire(result)

        elif event_type == EventType.ERROR.value:
            transfer_id = event.get("transferId")
            self._transfers.pop(transfer_id, None)
            future = self._pending_requests.pop(event.get("requestId"), None)
            error = TransferFailedError(transfer_id, event.get("error", "unknown error"))
            if transfer_id in self._outgoing:
                self._settle_outgoing(transfer_id, error.error)
            if future is not None and not future.done():
                future.set_exception(error)
            self._fail_waiters(transfer_id, error)
            self.on_error.fire(error)

        else:
            logger.warning("Unknown transfer event type on port %s: %r", self.port_id, event_type)

    def _settle_outgoing(self, transfer_id: str, error: Optional[str]) -> None:
        ack = self._outgoing.pop(transfer_id, None)
        if ack is None or ack.done():
            return
        if error is None:
            ack.set_result(None)
        else:
            ack.set_exception(TransferFailedError(transfer_id, error))

    def _fail(self, transfer_id: str, message: str) -> None:
        error = TransferFailedError(transfer_id, message)
        self._fail_waiters(transfer_id, error)
        self.on_error.fire(error)

    def _fail_waiters(self, transfer_id: Optional[str], error: TransferError) -> None:
        for future in self._waiters.pop(transfer_id, []):
            if not future.done():
                future.set_exception(error)


class TransferPortController:
    """Tracks every transfer port announced through the host channel"""

    def __init__(self, host: HostSurface, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self._host = host
        self._chunk_size = chunk_size
        self._ports: Dict[str, TransferPortConnection] = {}
        self._port_waiters: Dict[str, List[asyncio.Future]] = {}
        self._store = DisposableStore()
        self.on_port_created: Emitter[TransferPortConnection] = Emitter("port-created")
        self._store.add(host.on_message(self._on_message))

    def ports(self) -> List[TransferPortConnection]:
        return list(self._ports.values())

    def get_port(self, port_id: str) -> Optional[TransferPortConnection]:
        return self._ports.get(port_id)

    async def wait_for_port(self, port_id: str, timeout: Optional[float] = None) -> TransferPortConnection:
        """Wait for the injected side to announce `port_id`

        Raises:
            asyncio.TimeoutError: if it was not announced within `timeout` seconds
        """
        port = self._ports.get(port_id)
        if port is not None:
            return port
        future = asyncio.get_running_loop().create_future()
        self._port_waiters.setdefault(port_id, []).append(future)
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            waiters = self._port_waiters.get(port_id)
            if waiters is not None and future in waiters:
                waiters.remove(future)
                if not waiters:
                    del self._port_waiters[port_id]

    def close_port(self, port_id: str) -> bool:
        port = self._ports.pop(port_id, None)
        if port is None:
            return False
        port.close()
        return True

    async def release_port(self, port_id: str) -> bool:
        """Close a port and tell the injected side to drop it"""
        port = self._ports.get(port_id)
        if port is None:
            return False
        self.close_port(port_id)
        try:
            payload = encode_message(envelope(PORT_CLOSE, port_id), self._host.supports_binary_messages)
            await self._host.send_message(port.tab_id, port.frame_id, payload)
        except Exception as e:
            logger.debug("Could not notify frame about closing port %s: %s", port_id, e)
        return True

    def close_ports_for_tab(self, tab_id: int) -> int:
        ids = [pid for pid, port in self._ports.items() if port.tab_id == tab_id]
        for port_id in ids:
            self.close_port(port_id)
        return len(ids)

    def close_ports_for_frame(self, tab_id: int, frame_id: int) -> int:
        ids = [pid for pid, port in self._ports.items() if port.tab_id == tab_id and port.frame_id == frame_id]
        for port_id in ids:
            self.close_port(port_id)
        return len(ids)

    def dispose(self) -> None:
        for port_id in list(self._ports):
            self.close_port(port_id)
        for futures in self._port_waiters.values():
            for future in futures:
                if not future.done():
                    future.cancel()
        self._port_waiters.clear()
        self._store.dispose()
        self.on_port_created.dispose()

    def _on_message(self, message: ChannelMessage) -> None:
        payload = message.payload
        if isinstance(payload, dict) and "kind" not in payload:
            return
        if not isinstance(payload, (dict, bytes, bytearray, memoryview)):
            return
        try:
            decoded = decode_message(payload)
        except CodecError as e:
            logger.debug("Ignoring undecodable channel message from tab %s: %s", message.tab_id, e)
            return

        kind = decoded.get("kind")
        port_id = decoded.get("portId")
        if kind == PORT_CREATE:
            self._create_port(port_id, message.tab_id, message.frame_id)
        elif kind == PORT_EVENT:
            port = self._ports.get(port_id)
            if port is None:
                logger.debug("Event for unknown port %s", port_id)
                return
            port.handle_event(decoded.get("message") or {})
        elif kind == PORT_CLOSE:
            self.close_port(port_id)

    def _create_port(self, port_id: str, tab_id: int, frame_id: int) -> None:
        host = self._host

        async def sender(payload: Any) -> None:
            await host.send_message(tab_id, frame_id, payload)

        existing = self._ports.pop(port_id, None)
        if existing is not None:
            existing.close()
        port = TransferPortConnection(
            port_id, tab_id, frame_id, sender, binary=host.supports_binary_messages, chunk_size=self._chunk_size
        )
        self._ports[port_id] = port
        logger.debug("Transfer port %s connected from tab %s frame %s", port_id, tab_id, frame_id)
        self.on_port_created.fire(port)
        for future in self._port_waiters.pop(port_id, []):
            if not future.done():
                future.set_result(port)
