"""
The unpacker: reconstructs a value graph from the tagged binary format.

The decoder works on an explicit cursor: every read is checked against the end of the
enclosing length-prefixed range, so it never reads past the data it's given, whatever
the lengths written in the stream.

Nested values are decoded from an explicit stack of frames rather than by recursion,
so deeply nested data can't exhaust the interpreter stack.
"""
from __future__ import annotations

import struct
from typing import Any, Callable, Dict, NoReturn, TYPE_CHECKING

from .buffer import GrowableBuffer
from .exceptions import MarshalCorruptStream
from .model import SubTag, Tag
from .reftable import UnpackRefTable
from .structures import Record

if TYPE_CHECKING:
    from .interfaces import IBytecodeService, _Msg

_BYTEORDER_FMT = {'little': '<', 'big': '>'}

class Decoder:
    """
    Unpacks values from a byte string, sharing one reference table.
    """

    def __init__(self, data: 'bytes|memoryview', refs: UnpackRefTable, *,
                 byteorder: str,
                 encoding: 'str|None',
                 bytecode: 'IBytecodeService',
                 msg: '_Msg',
                 pos: int = 0) -> None:
        self.data = memoryview(data)
        self.refs = refs
        self.encoding = encoding
        self.bytecode = bytecode
        self.msg = msg
        self.pos = pos

        fmt = _BYTEORDER_FMT[byteorder]
        self._u32 = struct.Struct(fmt + 'I')
        self._f64 = struct.Struct(fmt + 'd')

        self._dispatch: Dict[Tag, Callable[[int], Any]] = {
            Tag.NIL: self._unpack_nil,
            Tag.BOOLEAN: self._unpack_boolean,
            Tag.NUMBER: self._unpack_number,
            Tag.STRING: self._unpack_string,
            Tag.COMPOSITE: self._unpack_composite,
            Tag.CALLABLE: self._unpack_callable,
            Tag.OPAQUE: self._unpack_opaque,
            Tag.UNSUPPORTED: self._unpack_nil,
        }

    def _corrupt(self, desrc:str, offset:'int|None'=None) -> NoReturn:
        raise MarshalCorruptStream(None, desrc, offset=self.pos if offset is None else offset)

    # low level readers, all bounded by the end of the enclosing range

    def _take(self, n:int, end:int) -> memoryview:
        if self.pos + n > end:
            self._corrupt(f'truncated data: {n} bytes needed, {end - self.pos} available')
        chunk = self.data[self.pos:self.pos+n]
        self.pos += n
        return chunk

    def _read_u8(self, end:int) -> int:
        return self._take(1, end)[0]

    def _read_u32(self, end:int) -> int:
        return self._u32.unpack(self._take(self._u32.size, end))[0] # type:ignore[no-any-return]

    def _read_range(self, end:int) -> int:
        """
        Read a length field and return the end offset of the range it describes.
        """
        length = self._read_u32(end)
        if self.pos + length > end:
            self._corrupt(f'length field of {length} bytes overflows its enclosing range '
                          f'({end - self.pos} bytes left)', offset=self.pos - self._u32.size)
        return self.pos + length

    # unpackers

    def unpack_root(self) -> Record[object, object]:
        """
        Unpack the root record, it must span the whole remaining data.
        """
        end = len(self.data)
        body_end = self._read_range(end)
        if body_end != end:
            self._corrupt(f'{end - body_end} trailing bytes after the root record', offset=body_end)
        root: Record[object, object] = Record()
        self.refs.register(root)
        self.unpack_pairs(root, body_end)
        return root

    def unpack_pairs(self, record:Record[object, object], end:int) -> None:
        self._run(_RecordFrame(record, end))

    def unpack_value(self, end:int) -> object:
        """
        Unpack one tagged value, including everything it reaches.
        """
        value = self._unpack_one(end)
        if isinstance(value, _Frame):
            return self._run(value)
        return value

    def _run(self, frame:'_Frame') -> object:
        """
        Decode the values of nested frames from an explicit stack, until
        the given frame is complete.
        """
        stack = [frame]
        while True:
            top = stack[-1]
            if top.done(self):
                stack.pop()
                value = top.finish(self)
                if not stack:
                    return value
                stack[-1].accept(self, value)
                continue
            value = top.step(self)
            if isinstance(value, _Frame):
                stack.append(value)
            else:
                top.accept(self, value)

    def _unpack_one(self, end:int) -> object:
        """
        Read one tagged value. Scalars and references are returned as is,
        values with a body return the frame that will decode it.
        """
        offset = self.pos
        tag = self._read_u8(end)
        try:
            kind = Tag(tag)
        except ValueError:
            self._corrupt(f'bad type tag {tag}', offset=offset)
        return self._dispatch[kind](end)

    def _unpack_nil(self, end:int) -> None:
        return None

    def _unpack_boolean(self, end:int) -> bool:
        return self._read_u8(end) != 0

    def _unpack_number(self, end:int) -> float:
        return self._f64.unpack(self._take(self._f64.size, end))[0] # type:ignore[no-any-return]

    def _unpack_string(self, end:int) -> 'str|bytes':
        raw = bytes(self._take(self._read_u32(end), end))
        if self.encoding is None:
            return raw
        return raw.decode(self.encoding, 'surrogateescape')

    def _read_subtag(self, end:int) -> SubTag:
        offset = self.pos
        tag = self._read_u8(end)
        try:
            return SubTag(tag)
        except ValueError:
            self._corrupt(f'bad sub tag {tag}', offset=offset)

    def _unpack_reference(self, end:int) -> object:
        offset = self.pos
        ref = self._read_u32(end)
        try:
            return self.refs.get(ref)
        except KeyError:
            if self.refs.pending(ref):
                self._corrupt(f'reference {ref} names a value that is still being revived', offset=offset)
            self._corrupt(f'unknown reference {ref}', offset=offset)

    def _unpack_composite(self, end:int) -> object:
        sub = self._read_subtag(end)
        if sub is SubTag.REFERENCE:
            return self._unpack_reference(end)
        if sub is SubTag.OPAQUE:
            return self._unpack_persisted(end)
        body_end = self._read_range(end)
        record: Record[object, object] = Record()
        self.refs.register(record)
        return _RecordFrame(record, body_end)

    def _unpack_callable(self, end:int) -> object:
        offset = self.pos
        sub = self._read_subtag(end)
        if sub is SubTag.REFERENCE:
            return self._unpack_reference(end)
        if sub is not SubTag.VALUE:
            self._corrupt(f'bad sub tag {int(sub)} for a callable', offset=offset)
        blob = self._take(self._read_u32(end), end)
        reader = GrowableBuffer.wrap(blob)
        try:
            func = self.bytecode.load(b''.join(iter(reader.read, b'')))
        except ValueError as e:
            self._corrupt(f'cannot load callable: {e}', offset=offset)
        self.refs.register(func)
        return _UpvaluesFrame(func, Record(), self._read_range(end))

    def _set_upvalues(self, func:Callable[..., object], env:Record[object, object], offset:int) -> None:
        nups = self.bytecode.nupvalues(func)
        for slot, value in env.items():
            if not (isinstance(slot, (int, float)) and not isinstance(slot, bool)
                    and float(slot).is_integer() and 1 <= slot <= nups):
                self._corrupt(f'bad upvalue slot {slot!r}, callable has {nups} upvalues', offset=offset)
            self.bytecode.set_upvalue(func, int(slot), value)

    def _unpack_opaque(self, end:int) -> object:
        sub = self._read_subtag(end)
        if sub is SubTag.REFERENCE:
            return self._unpack_reference(end)
        if sub is SubTag.OPAQUE:
            return self._unpack_persisted(end)
        self.msg('opaque value was packed without persist hook, unpacking as nil', ctx=self.pos, thresh=1)
        return None

    def _unpack_persisted(self, end:int) -> object:
        ref = self.refs.reserve()
        return _PersistedFrame(ref, self._read_range(end))


class _Frame:
    """
    A value whose body is being decoded, it receives the values read in its range.
    """
    __slots__ = ('end',)

    def __init__(self, end:int) -> None:
        self.end = end

    def done(self, decoder:Decoder) -> bool:
        raise NotImplementedError()

    def step(self, decoder:Decoder) -> object:
        return decoder._unpack_one(self.end)

    def accept(self, decoder:Decoder, value:object) -> None:
        raise NotImplementedError()

    def finish(self, decoder:Decoder) -> object:
        raise NotImplementedError()

class _RecordFrame(_Frame):
    __slots__ = ('record', 'key', 'has_key')

    def __init__(self, record:Record[object, object], end:int) -> None:
        super().__init__(end)
        self.record = record
        self.key: object = None
        self.has_key = False

    def done(self, decoder:Decoder) -> bool:
        if decoder.pos < self.end:
            return False
        if self.has_key:
            decoder._corrupt('key without value')
        return True

    def accept(self, decoder:Decoder, value:object) -> None:
        if self.has_key:
            self.record[self.key] = value
            self.key, self.has_key = None, False
        else:
            self.key, self.has_key = value, True

    def finish(self, decoder:Decoder) -> object:
        return self.record

class _UpvaluesFrame(_RecordFrame):
    """
    The captured environment of a callable, upvalues are set once it's complete.
    """
    __slots__ = ('func',)

    def __init__(self, func:Callable[..., object], record:Record[object, object], end:int) -> None:
        super().__init__(record, end)
        self.func = func

    def finish(self, decoder:Decoder) -> object:
        decoder._set_upvalues(self.func, self.record, self.end)
        return self.func

class _PersistedFrame(_Frame):
    """
    The body of a persisted value: the reviver wrapped in a one item record, then the state.
    The value is revived, and its reserved id bound, once the state is decoded.
    """
    __slots__ = ('ref', 'reviver', 'state', 'stage')

    def __init__(self, ref:int, end:int) -> None:
        super().__init__(end)
        self.ref = ref
        self.reviver: 'Callable[[object], object]|None' = None
        self.state: object = None
        # 0: expects the reviver record, 1: expects the state, 2: complete.
        self.stage = 0

    def done(self, decoder:Decoder) -> bool:
        return self.stage == 2

    def step(self, decoder:Decoder) -> object:
        if self.stage == 0:
            return _RecordFrame(Record(), decoder._read_range(self.end))
        return super().step(decoder)

    def accept(self, decoder:Decoder, value:object) -> None:
        if self.stage == 0:
            assert isinstance(value, Record)
            reviver = value.get(1)
            if len(value) != 1 or not callable(reviver):
                decoder._corrupt('persisted value has no reviver')
            self.reviver = reviver
        else:
            self.state = value
        self.stage += 1

    def finish(self, decoder:Decoder) -> object:
        if decoder.pos != self.end:
            decoder._corrupt(f'{self.end - decoder.pos} trailing bytes after persisted value')
        assert self.reviver is not None
        value = self.reviver(self.state)
        decoder.refs.bind(self.ref, value)
        return value
