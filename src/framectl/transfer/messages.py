"""Transfer port messages

Commands travel controller -> injected side, events travel back.

## Commands

| type                  | fields                                                  |
|-----------------------|---------------------------------------------------------|
| request-file          | selector, attribute                                     |
| request-image         | selector, format                                        |
| request-buffer        | selector, bufferType                                    |
| cancel-transfer       | transferId                                              |
| receive-file-start    | meta: transferId, filename, mimeType, size, chunks      |
| receive-file-chunk    | chunk: transferId, chunkIndex, totalChunks, data        |
| receive-file-complete | transferId                                              |

## Events

| type              | fields                                                      |
|-------------------|-------------------------------------------------------------|
| transfer-start    | request (TransferRequest)                                   |
| chunk             | chunk (FileChunk)                                           |
| progress          | progress (TransferProgress)                                 |
| transfer-complete | result (TransferComplete)                                   |
| error             | transferId, error                                           |

Every message on the channel is wrapped in an envelope
`{"kind": PORT_CREATE | PORT_COMMAND | PORT_EVENT | PORT_CLOSE, "portId": ..., "message": ...}`.
"""

import math
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

DEFAULT_CHUNK_SIZE = 64 * 1024

PORT_CREATE = "transfer-port-create"
PORT_COMMAND = "transfer-port-command"
PORT_EVENT = "transfer-port-event"
PORT_CLOSE = "transfer-port-close"


class CommandType(str, Enum):
    REQUEST_FILE = "request-file"
    REQUEST_IMAGE = "request-image"
    REQUEST_BUFFER = "request-buffer"
    CANCEL_TRANSFER = "cancel-transfer"
    RECEIVE_FILE_START = "receive-file-start"
    RECEIVE_FILE_CHUNK = "receive-file-chunk"
    RECEIVE_FILE_COMPLETE = "receive-file-complete"


class EventType(str, Enum):
    TRANSFER_START = "transfer-start"
    CHUNK = "chunk"
    PROGRESS = "progress"
    TRANSFER_COMPLETE = "transfer-complete"
    ERROR = "error"


def new_transfer_id() -> str:
    return f"transfer-{uuid.uuid4()}"


def new_port_id() -> str:
    return f"port-{uuid.uuid4()}"


def total_chunks(size: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
    """Number of chunks needed for `size` bytes"""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    return math.ceil(size / chunk_size)


@dataclass
class TransferRequest:
    """Metadata announced before the first chunk"""
    transfer_id: str
    filename: str
    mime_type: str
    size: int
    chunks: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transferId": self.transfer_id,
            "filename": self.filename,
            "mimeType": self.mime_type,
            "size": self.size,
            "chunks": self.chunks,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransferRequest":
        return cls(
            transfer_id=data["transferId"],
            filename=data.get("filename", ""),
            mime_type=data.get("mimeType", "application/octet-stream"),
            size=int(data.get("size", 0)),
            chunks=int(data.get("chunks", 0)),
        )


@dataclass
class FileChunk:
    transfer_id: str
    chunk_index: int
    total_chunks: int
    data: bytes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transferId": self.transfer_id,
            "chunkIndex": self.chunk_index,
            "totalChunks": self.total_chunks,
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileChunk":
        return cls(
            transfer_id=data["transferId"],
            chunk_index=int(data["chunkIndex"]),
            total_chunks=int(data["totalChunks"]),
            data=bytes(data.get("data") or b""),
        )


@dataclass
class TransferProgress:
    transfer_id: str
    chunks_received: int
    total_chunks: int
    bytes_received: int
    total_bytes: int

    @property
    def fraction(self) -> float:
        if self.total_bytes <= 0:
            return 1.0
        return self.bytes_received / self.total_bytes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transferId": self.transfer_id,
            "chunksReceived": self.chunks_received,
            "totalChunks": self.total_chunks,
            "bytesReceived": self.bytes_received,
            "totalBytes": self.total_bytes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransferProgress":
        return cls(
            transfer_id=data["transferId"],
            chunks_received=int(data["chunksReceived"]),
            total_chunks=int(data["totalChunks"]),
            bytes_received=int(data["bytesReceived"]),
            total_bytes=int(data["totalBytes"]),
        )


@dataclass
class TransferComplete:
    transfer_id: str
    success: bool
    data: Optional[bytes] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"transferId": self.transfer_id, "success": self.success}
        if self.data is not None:
            result["data"] = self.data
        if self.error is not None:
            result["error"] = self.error
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransferComplete":
        payload = data.get("data")
        return cls(
            transfer_id=data["transferId"],
            success=bool(data.get("success")),
            data=bytes(payload) if payload is not None else None,
            error=data.get("error"),
        )


# Command constructors


def request_file_command(selector: str, attribute: Optional[str] = None) -> Dict[str, Any]:
    return {"type": CommandType.REQUEST_FILE.value, "selector": selector, "attribute": attribute}


def request_image_command(selector: str, image_format: str = "png") -> Dict[str, Any]:
    return {"type": CommandType.REQUEST_IMAGE.value, "selector": selector, "format": image_format}


def request_buffer_command(selector: str, buffer_type: str = "arraybuffer") -> Dict[str, Any]:
    return {"type": CommandType.REQUEST_BUFFER.value, "selector": selector, "bufferType": buffer_type}


def cancel_command(transfer_id: str) -> Dict[str, Any]:
    return {"type": CommandType.CANCEL_TRANSFER.value, "transferId": transfer_id}


def start_command(meta: TransferRequest) -> Dict[str, Any]:
    return {"type": CommandType.RECEIVE_FILE_START.value, "meta": meta.to_dict()}


def chunk_command(chunk: FileChunk) -> Dict[str, Any]:
    return {"type": CommandType.RECEIVE_FILE_CHUNK.value, "chunk": chunk.to_dict()}


def complete_command(transfer_id: str) -> Dict[str, Any]:
    return {"type": CommandType.RECEIVE_FILE_COMPLETE.value, "transferId": transfer_id}


# Event constructors


def start_event(request: TransferRequest) -> Dict[str, Any]:
    return {"type": EventType.TRANSFER_START.value, "request": request.to_dict()}


def chunk_event(chunk: FileChunk) -> Dict[str, Any]:
    return {"type": EventType.CHUNK.value, "chunk": chunk.to_dict()}


def progress_event(progress: TransferProgress) -> Dict[str, Any]:
    return {"type": EventType.PROGRESS.value, "progress": progress.to_dict()}


def complete_event(result: TransferComplete) -> Dict[str, Any]:
    return {"type": EventType.TRANSFER_COMPLETE.value, "result": result.to_dict()}


def error_event(transfer_id: str, error: str) -> Dict[str, Any]:
    return {"type": EventType.ERROR.value, "transferId": transfer_id, "error": error}


def envelope(kind: str, port_id: str, message: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {"kind": kind, "portId": port_id, "message": message}
