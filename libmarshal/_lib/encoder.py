"""
The packer: turns a value graph into the tagged binary format.

Every record starts with a type tag byte (see `Tag`). Scalars follow with their payload,
reference-tracked values follow with a sub-tag (see `SubTag`): either the id of a value
already packed, or the length-prefixed body of a value seen for the first time.

Nested bodies are written from an explicit stack of open bodies rather than by recursion,
so the depth of the graph is only bounded by memory.
"""
from __future__ import annotations

import itertools
import struct
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Set, TYPE_CHECKING

from .buffer import GrowableBuffer, UINT32_MAX
from .exceptions import MarshalUnsupportedValue, MarshalValueTooLarge
from .model import SubTag, Tag, classify, iter_pairs
from .reftable import PackRefTable

if TYPE_CHECKING:
    from .hooks import HookRegistry
    from .interfaces import IBytecodeService, PersistHook, _Msg

_BYTEORDER_FMT = {'little': '<', 'big': '>'}

class _Nested:
    """
    An item of a body that is itself a length prefixed body, without type tag.
    """
    __slots__ = ('items',)

    def __init__(self, items:Iterator[object]) -> None:
        self.items = items

class _Body:
    """
    A body being written. When it has an offset, it's length prefixed and
    the length is back-filled once all items are packed.
    """
    __slots__ = ('offset', 'items', 'on_close')

    def __init__(self, offset:Optional[int], items:Iterator[object],
                 on_close:Optional[Callable[[], None]]) -> None:
        self.offset = offset
        self.items = items
        self.on_close = on_close

_END = object()

def _flat_pairs(pairs:Iterable[Any]) -> Iterator[object]:
    return itertools.chain.from_iterable(pairs)

class Encoder:
    """
    Packs values into a buffer, sharing one reference table.
    """

    def __init__(self, buf: GrowableBuffer, refs: PackRefTable, *,
                 byteorder: str,
                 encoding: 'str|None',
                 hooks: 'HookRegistry',
                 bytecode: 'IBytecodeService',
                 msg: '_Msg') -> None:
        self.buf = buf
        self.refs = refs
        self.encoding = encoding or 'utf-8'
        self.hooks = hooks
        self.bytecode = bytecode
        self.msg = msg

        fmt = _BYTEORDER_FMT[byteorder]
        self._u32 = struct.Struct(fmt + 'I')
        self._f64 = struct.Struct(fmt + 'd')

        self._stack: List[_Body] = []
        # ids of the persisted values whose body is being written,
        # they can't be revived before the end of their body.
        self._persisting: Set[int] = set()

        self._dispatch: Dict[Tag, Callable[[Any], None]] = {
            Tag.NIL: self._pack_nil,
            Tag.BOOLEAN: self._pack_boolean,
            Tag.NUMBER: self._pack_number,
            Tag.STRING: self._pack_string,
            Tag.COMPOSITE: self._pack_composite,
            Tag.CALLABLE: self._pack_callable,
            Tag.OPAQUE: self._pack_opaque,
            Tag.UNSUPPORTED: self._pack_unsupported,
        }

    # low level writers

    def _write_u8(self, n:int) -> None:
        self.buf.write(bytes((n,)))

    def _write_u32(self, n:int) -> None:
        self.buf.write(self._u32.pack(n))

    def _write_blob(self, data:bytes) -> None:
        if len(data) > UINT32_MAX:
            raise MarshalValueTooLarge(None, f'{len(data)} bytes long string or blob',
                                       offset=self.buf.head)
        self._write_u32(len(data))
        self.buf.write(data)

    def _open_body(self, items:Iterator[object],
                   on_close:Optional[Callable[[], None]]=None) -> None:
        """
        Start a length prefixed body, its items are packed by `_run`.
        """
        offset = self.buf.head
        self._write_u32(0)
        self._stack.append(_Body(offset, items, on_close))

    def _close_body(self, body:_Body) -> None:
        if body.offset is not None:
            length = self.buf.head - body.offset - self._u32.size
            if length > UINT32_MAX:
                raise MarshalValueTooLarge(None, f'{length} bytes long nested body', offset=body.offset)
            self.buf.patch(body.offset, self._u32.pack(length))
        if body.on_close is not None:
            body.on_close()

    def _run(self, depth:int=0) -> None:
        """
        Pack the items of the open bodies until only *depth* bodies are left open.
        """
        stack = self._stack
        while len(stack) > depth:
            body = stack[-1]
            item = next(body.items, _END)
            if item is _END:
                stack.pop()
                self._close_body(body)
            elif isinstance(item, _Nested):
                self._open_body(item.items)
            else:
                self._pack_one(item)

    # packers

    def pack_root(self, root:object) -> None:
        """
        Pack the pairs of the root composite, prefixed by their length only.
        The root is always assigned the first id.
        """
        if classify(root) is not Tag.COMPOSITE:
            raise MarshalUnsupportedValue(root, f'root value of type {type(root).__name__!r}, '
                                          'expected a record, a dict, a list or a tuple')
        self.refs.register(root)
        self._open_body(_flat_pairs(iter_pairs(root)))
        self._run()

    def pack_pairs(self, composite:'Mapping[object, object]|Sequence[object]') -> None:
        """
        Pack the pairs of a composite, without length prefix.
        """
        depth = len(self._stack)
        self._stack.append(_Body(None, _flat_pairs(iter_pairs(composite)), None))
        self._run(depth)

    def pack_value(self, value:object) -> None:
        """
        Pack one tagged value, including everything it reaches.
        """
        depth = len(self._stack)
        self._pack_one(value)
        self._run(depth)

    def _pack_one(self, value:object) -> None:
        kind = classify(value)
        self._write_u8(kind)
        self._dispatch[kind](value)

    def _pack_nil(self, value:None) -> None:
        pass

    def _pack_boolean(self, value:bool) -> None:
        self._write_u8(1 if value else 0)

    def _pack_number(self, value:'int|float') -> None:
        try:
            number = float(value)
        except OverflowError as e:
            raise MarshalValueTooLarge(value, 'integer does not fit in a double',
                                       offset=self.buf.head) from e
        self.buf.write(self._f64.pack(number))

    def _pack_string(self, value:'str|bytes|bytearray') -> None:
        if isinstance(value, str):
            value = value.encode(self.encoding, 'surrogateescape')
        self._write_blob(value)

    def _pack_reference(self, value:object) -> bool:
        """
        If the value is already in the table, write a reference to it and return True.

        :raises MarshalUnsupportedValue: If the value is a persisted value that
            is reachable from its own persisted state.
        """
        ref = self.refs.lookup(value)
        if ref is None:
            return False
        if ref in self._persisting:
            raise MarshalUnsupportedValue(value, f'persisted {type(value).__qualname__!r} value '
                                          'is reachable from its own persisted state, '
                                          'it would be referenced before being revived')
        self._write_u8(SubTag.REFERENCE)
        self._write_u32(ref)
        return True

    def _pack_composite(self, value:'Mapping[object, object]|Sequence[object]') -> None:
        if self._pack_reference(value):
            return
        hook = self.hooks.lookup(value)
        if hook is not None:
            self._pack_persisted(value, hook)
            return
        self.refs.register(value)
        self._write_u8(SubTag.VALUE)
        self._open_body(_flat_pairs(iter_pairs(value)))

    def _pack_callable(self, value:Callable[..., object]) -> None:
        if self._pack_reference(value):
            return
        self.refs.register(value)
        blob = self.bytecode.dump(value)
        self._write_u8(SubTag.VALUE)
        self._write_blob(blob)
        self._open_body(_flat_pairs(self.bytecode.upvalues(value)))

    def _pack_opaque(self, value:object) -> None:
        if self._pack_reference(value):
            return
        hook = self.hooks.lookup(value)
        if hook is None:
            self.msg(f'no persist hook for {type(value).__qualname__!r} value, it will be unpacked as nil',
                     ctx=self.buf.head, thresh=1)
            self._write_u8(SubTag.VALUE)
            return
        self._pack_persisted(value, hook)

    def _pack_persisted(self, value:object, hook:'PersistHook') -> None:
        ref = self.refs.register(value)
        persisted = self.hooks.persist(value, hook)
        assert persisted is not None
        reviver, state = persisted
        self._write_u8(SubTag.OPAQUE)
        # the body is the reviver wrapped in a one item record, followed by the state.
        self._persisting.add(ref)
        self._open_body(iter((_Nested(iter((1, reviver))), state)),
                        on_close=lambda: self._persisting.discard(ref))

    def _pack_unsupported(self, value:object) -> None:
        self.msg(f'dropping {type(value).__qualname__!r} value, it will be unpacked as nil',
                 ctx=self.buf.head, thresh=1)
