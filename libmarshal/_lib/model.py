"""
This module contains the value model: the closed set of value kinds the marshaller knows about and their wire tags.
"""
from __future__ import annotations

import enum
import inspect
import types
from typing import Iterator, Mapping, Sequence, Tuple

MAGIC = 0x8e
"""
First byte of every stream.
"""

LITTLE_ENDIAN_MARKER = 1
BIG_ENDIAN_MARKER = 0

class Tag(enum.IntEnum):
    """
    Kind of a value, the enum values are the type tag bytes written on the wire.
    """
    NIL = 0
    BOOLEAN = 1
    # 2 is reserved, light userdata in the original runtime.
    NUMBER = 3
    STRING = 4
    COMPOSITE = 5
    CALLABLE = 6
    OPAQUE = 7
    UNSUPPORTED = 8

class SubTag(enum.IntEnum):
    """
    Second byte of every reference-tracked record.
    """
    REFERENCE = 1
    VALUE = 2
    OPAQUE = 3

TRACKED = frozenset((Tag.COMPOSITE, Tag.CALLABLE, Tag.OPAQUE))
"""
Kinds that are registered in the reference table, everything else is copied by value.
"""

_CALLABLE_TYPES = (
    types.FunctionType,
    types.BuiltinFunctionType,
    types.MethodType,
    types.MethodWrapperType,
    types.WrapperDescriptorType,
    types.MethodDescriptorType,
)

def is_coroutine_like(value:object) -> bool:
    """
    Whether the value holds live execution state.
    """
    return (inspect.isgenerator(value) or
            inspect.iscoroutine(value) or
            inspect.isasyncgen(value) or
            inspect.isframe(value))

def classify(value:object) -> Tag:
    """
    Map a python value to its kind.

    - ``None`` -> `Tag.NIL`
    - `bool` -> `Tag.BOOLEAN`
    - `int` and `float` -> `Tag.NUMBER`
    - `str`, `bytes` and `bytearray` -> `Tag.STRING`
    - mappings, lists and tuples -> `Tag.COMPOSITE`
    - functions and other routines -> `Tag.CALLABLE`
    - generators, coroutines, async generators and frames -> `Tag.UNSUPPORTED`
    - anything else -> `Tag.OPAQUE`
    """
    if value is None:
        return Tag.NIL
    if isinstance(value, bool):
        return Tag.BOOLEAN
    if isinstance(value, (int, float)):
        return Tag.NUMBER
    if isinstance(value, (str, bytes, bytearray)):
        return Tag.STRING
    if isinstance(value, (Mapping, list, tuple)):
        return Tag.COMPOSITE
    if isinstance(value, _CALLABLE_TYPES):
        return Tag.CALLABLE
    if is_coroutine_like(value):
        return Tag.UNSUPPORTED
    return Tag.OPAQUE

def iter_pairs(value:'Mapping[object, object]|Sequence[object]') -> Iterator[Tuple[object, object]]:
    """
    Iterate over the (key, value) pairs of a composite.
    Sequences are keyed from 1 to N.
    """
    if isinstance(value, Mapping):
        yield from value.items()
    else:
        for i, v in enumerate(value, start=1):
            yield i, v
