from __future__ import annotations

import abc
import attr as attrs
from typing import Optional

@attrs.s(auto_attribs=True, kw_only=True, str=False, frozen=True)
class StreamLocation:
    offset:'int|None' = None
    typename:'str|None' = None

    @classmethod
    def make(cls, thing:object, offset:'int|None'=None) -> 'StreamLocation':
        """
        :param thing: The value being packed, or the raw stream being decoded.
        """
        if thing is None or isinstance(thing, (bytes, bytearray, memoryview)):
            return StreamLocation(offset=offset)
        return StreamLocation(offset=offset, typename=type(thing).__qualname__)

    def __str__(self) -> str:
        if self.typename is None:
            if self.offset is not None:
                return f"offset {self.offset}"
            return '?'
        if self.offset is not None:
            return f"{self.typename} at offset {self.offset}"
        return self.typename

@attrs.s(auto_attribs=True)
class MarshalException(Exception, abc.ABC):
    """
    Base exception for the library.
    """

    value: object
    desrc: Optional[str] = None
    offset: Optional[int] = attrs.ib(kw_only=True, default=None)

    def location(self) -> StreamLocation:
        return StreamLocation.make(self.value, self.offset)

    @abc.abstractmethod
    def msg(self) -> str:
        ...

    def __str__(self) -> str:
        return f'{self.location()}: {self.msg()}'


class MarshalOutOfMemory(MarshalException):
    """
    The output buffer could not be grown.
    """

    def msg(self) -> str:
        return f"Out of memory, {self.desrc}"


class MarshalValueTooLarge(MarshalException):
    """
    A string, blob or number does not fit in its wire field.
    """

    def msg(self) -> str:
        return f"Value too large, {self.desrc}"


class MarshalUnsupportedValue(MarshalException):
    """
    The value can't be packed, i.e. a callable without introspectable bytecode.
    """

    def msg(self) -> str:
        return f"Unsupported {self.desrc}"


@attrs.s
class MarshalInvalidPersistHook(MarshalException):
    """
    A persist hook did not return a callable reviver.
    """
    got: object = attrs.ib(kw_only=True, default=None)
    desrc: None = attrs.ib(init=False, default=None)

    def msg(self) -> str:
        return f"Persist hook must return a function, got: {type(self.got).__name__}"


class MarshalCorruptStream(MarshalException):
    """
    The stream can't be decoded: bad header, bad tag, truncated data or unknown reference.
    """

    def msg(self) -> str:
        return f"Corrupt stream, {self.desrc}"
