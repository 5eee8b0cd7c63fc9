"""
The 2 bytes header of every stream: magic constant and endianness marker.
"""
from __future__ import annotations

from .buffer import GrowableBuffer
from .exceptions import MarshalCorruptStream
from .model import BIG_ENDIAN_MARKER, LITTLE_ENDIAN_MARKER, MAGIC

HEADER_SIZE = 2

_MARKERS = {'little': LITTLE_ENDIAN_MARKER, 'big': BIG_ENDIAN_MARKER}
_BYTEORDERS = {v:k for k,v in _MARKERS.items()}

def write_header(buf:GrowableBuffer, byteorder:str) -> None:
    buf.write(bytes((MAGIC, _MARKERS[byteorder])))

def read_header(data:'bytes|memoryview') -> str:
    """
    Check the header and return the byte order the payload was written with.

    :raises MarshalCorruptStream: If the header is missing or invalid.
    """
    if len(data) < HEADER_SIZE:
        raise MarshalCorruptStream(None, 'bad header', offset=0)
    if data[0] != MAGIC:
        raise MarshalCorruptStream(None, f'bad magic {data[0]:#x}', offset=0)
    try:
        return _BYTEORDERS[data[1]]
    except KeyError:
        raise MarshalCorruptStream(None, f'bad endianness marker {data[1]}', offset=1) from None
