"""Chunk reassembly"""

from typing import Dict, Optional

from framectl.transfer.messages import TransferProgress, TransferRequest


class ReceivingTransfer:
    """One in-flight incoming transfer

    Chunks may arrive in any order. The payload is only available once the
    received indices are exactly `0 .. chunks-1`, and is concatenated in
    index order.
    """

    def __init__(self, request: TransferRequest):
        self.request = request
        self._chunks: Dict[int, bytes] = {}
        self._bytes_received = 0

    @property
    def transfer_id(self) -> str:
        return self.request.transfer_id

    @property
    def total_chunks(self) -> int:
        return self.request.chunks

    @property
    def chunks_received(self) -> int:
        return len(self._chunks)

    @property
    def bytes_received(self) -> int:
        return self._bytes_received

    def add_chunk(self, index: int, data: bytes) -> bool:
        """Store chunk `index`; returns False for an out-of-range index

        A repeated index replaces the earlier chunk.
        """
        if index < 0 or index >= self.request.chunks:
            return False
        previous = self._chunks.get(index)
        if previous is not None:
            self._bytes_received -= len(previous)
        self._chunks[index] = bytes(data)
        self._bytes_received += len(data)
        return True

    def is_complete(self) -> bool:
        return len(self._chunks) == self.request.chunks and all(
            index in self._chunks for index in range(self.request.chunks)
        )

    def get_data(self) -> Optional[bytes]:
        if not self.is_complete():
            return None
        return b"".join(self._chunks[index] for index in range(self.request.chunks))

    def progress(self) -> TransferProgress:
        return TransferProgress(
            transfer_id=self.transfer_id,
            chunks_received=self.chunks_received,
            total_chunks=self.request.chunks,
            bytes_received=self._bytes_received,
            total_bytes=self.request.size,
        )
