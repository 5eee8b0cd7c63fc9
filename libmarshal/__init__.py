"""
Object-graph marshalling for python values, in the spirit of the ``lmarshal`` Lua library.

Goals and non-goals
===================

The main goal of this project is to provide a simple way to snapshot a graph of values to a 
flat byte string and to re-create an equivalent graph from it. The same machinery is used to deep-clone 
values: ``clone(x)`` is ``unmarshal(marshal(x))``. 

Aliasing and cycles are preserved: a value that is reachable from several places in the graph is 
packed only once, and unpacks as a single instance.

Trade-offs
----------

- No schema or version evolution: a stream is only meant to be read by the same library and runtime version.
- No streaming or partial decoding, no compression.
- Live execution state (generators, coroutines) is not serialized: these values unpack as ``None``.
- Functions are serialized with their code object, the stream is *not* safe to load from untrusted sources.

The model
=========

Values are classified into a closed set of kinds, see `Tag`: nil, booleans, numbers, strings, 
composites, callables, opaque values and unsupported values.

- Numbers are always packed as doubles, so integers unpack as floats.
- ``str``, ``bytes`` and ``bytearray`` are all strings, they unpack as ``str`` (or ``bytes``
  with ``encoding=None``). Keys that only differ by their string type, like ``'a'`` and ``b'a'``,
  collapse into a single entry, the last one packed wins.
- Composites (`Record`, dicts, lists and tuples) unpack as `Record` instances. Lists and tuples are 
  keyed from 1 to N. Records are compared and hashed by identity, use `deep_equal` to compare graphs.
- Callables are python functions, packed with their code object and their closure cells.
- Opaque values are packed through persist hooks registered in a `HookRegistry`: the hook returns a 
  *reviver* function and some state, the reviver is called with the state at unpack time. Opaque values 
  without hooks unpack as ``None``.

How to use the library
======================

>>> data = marshal({'answer': 42, 'items': ['a', 'b']})
>>> t = unmarshal(data)
>>> t['answer']
42.0
>>> t['items'].sequence()
['a', 'b']

Use a `Marshaller` to re-use the same `Options` for several calls.
"""

from ._api.marshaller import Marshaller, Options, marshal, unmarshal, clone
from ._lib.structures import Record, deep_equal
from ._lib.model import Tag, SubTag, classify
from ._lib.hooks import HookRegistry, registry
from ._lib.bytecode import CodeService
from ._lib.buffer import GrowableBuffer
from ._lib.exceptions import *

__all__ = (

    "marshal",
    "unmarshal",
    "clone",
    "Marshaller",
    "Options",

    "Record",
    "deep_equal",

    "Tag",
    "SubTag",
    "classify",

    "HookRegistry",
    "registry",
    "CodeService",
    "GrowableBuffer",

    "StreamLocation",
    "MarshalException",
    "MarshalOutOfMemory",
    "MarshalValueTooLarge",
    "MarshalUnsupportedValue",
    "MarshalInvalidPersistHook",
    "MarshalCorruptStream",
)
