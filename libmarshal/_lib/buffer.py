"""
Append-only byte buffer used by the encoder.
"""
from __future__ import annotations

from .exceptions import MarshalOutOfMemory, MarshalValueTooLarge

UINT32_MAX = 0xFFFFFFFF

class GrowableBuffer:
    """
    Append-only byte buffer with geometric growth.

    The buffer also acts as a drain-once reader: `read` returns the whole
    written region the first time it's called and ``b''`` afterwards.
    This is how chunks are handed to a bytecode loader.
    """

    __slots__ = ('_data', 'size', 'head', 'seek')

    def __init__(self, capacity:int=128) -> None:
        self.size = capacity
        self.head = 0
        self.seek = 0
        try:
            self._data = bytearray(capacity)
        except MemoryError as e:
            raise MarshalOutOfMemory(None, f'cannot allocate {capacity} bytes') from e

    @classmethod
    def wrap(cls, data:'bytes|memoryview') -> 'GrowableBuffer':
        """
        Create a buffer already holding the given bytes.
        """
        buf = cls(max(len(data), 1))
        buf.write(data)
        return buf

    def _grow(self, needed:int) -> None:
        new_size = self.size << 1
        while new_size - self.head < needed:
            new_size <<= 1
        try:
            data = bytearray(new_size)
        except MemoryError as e:
            raise MarshalOutOfMemory(None, f'cannot grow buffer to {new_size} bytes',
                                     offset=self.head) from e
        data[:self.head] = self._data[:self.head]
        self._data = data
        self.size = new_size

    def write(self, data:'bytes|bytearray|memoryview') -> None:
        n = len(data)
        if n > UINT32_MAX:
            raise MarshalValueTooLarge(None, f'chunk of {n} bytes', offset=self.head)
        if self.size - self.head < n:
            self._grow(n)
        self._data[self.head:self.head+n] = data
        self.head += n

    def patch(self, offset:int, data:bytes) -> None:
        """
        Overwrite bytes that have already been written.
        """
        end = offset + len(data)
        assert 0 <= offset and end <= self.head, (offset, end, self.head)
        self._data[offset:end] = data

    def read(self) -> bytes:
        """
        Drain the buffer.
        """
        if self.seek < self.head:
            self.seek = self.head
            return bytes(self._data[:self.head])
        return b''

    def getvalue(self) -> bytes:
        return bytes(self._data[:self.head])

    def __len__(self) -> int:
        return self.head
